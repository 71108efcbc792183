"""Host page: URL bar and sandboxed frame, speaking the Event Protocol.

__PROXY_PATH__ and __VERSION__ are filled in by host_page().
"""

HOST_PAGE_HTML = '''<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Frame Proxy</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body { font-family: system-ui, -apple-system, sans-serif; background: #000; color: #eee; height: 100vh; display: flex; flex-direction: column; }
        #bar { display: flex; gap: 6px; align-items: center; padding: 8px; background: #111827; border-bottom: 1px solid #374151; }
        #bar button { background: #1f2937; color: #ddd; border: 1px solid #374151; border-radius: 6px; padding: 6px 10px; cursor: pointer; }
        #bar input { flex: 1; background: #1f2937; color: #fff; border: 1px solid #374151; border-radius: 6px; padding: 6px 10px; }
        #favicon { width: 16px; height: 16px; }
        #status { font-size: 12px; color: #9ca3af; min-width: 80px; text-align: right; }
        #frame { flex: 1; width: 100%; border: none; background: #fff; }
        .popup { position: fixed; inset: 8% 10%; background: #111827; border: 1px solid #4b5563; border-radius: 10px; display: flex; flex-direction: column; box-shadow: 0 20px 60px rgba(0,0,0,0.6); }
        .popup header { display: flex; justify-content: space-between; padding: 6px 10px; font-size: 13px; }
        .popup iframe { flex: 1; border: none; background: #fff; border-radius: 0 0 10px 10px; }
    </style>
</head>
<body>
    <form id="bar">
        <button type="button" id="back" title="Back">&larr;</button>
        <button type="button" id="forward" title="Forward">&rarr;</button>
        <button type="button" id="reload" title="Reload">&#8635;</button>
        <img id="favicon" alt="">
        <input id="url" placeholder="Enter a URL, e.g. example.com" autocomplete="off">
        <button type="submit">Go</button>
        <button type="button" id="mute">Mute</button>
        <button type="button" id="clear">Clear data</button>
        <span id="status"></span>
    </form>
    <iframe id="frame" sandbox="allow-same-origin allow-scripts allow-forms allow-downloads allow-modals allow-popups allow-presentation"></iframe>

    <script>
    (function () {
        const PROXY_PATH = '__PROXY_PATH__';
        const VERSION = __VERSION__;
        const EVENTS = ['NAVIGATE', 'OPEN_POPUP', 'LOADING_STATE', 'PAGE_TITLE', 'ERROR', 'FAVICON', 'DEBUG'];
        const frame = document.getElementById('frame');
        const input = document.getElementById('url');
        const status = document.getElementById('status');
        const favicon = document.getElementById('favicon');
        const popups = new Map();
        let history = [];
        let index = -1;
        let muted = false;

        function normalize(url) {
            url = url.trim();
            if (url.startsWith('//')) return 'https:' + url;
            if (!/^https?:\\/\\//i.test(url)) return 'https://' + url;
            return url;
        }

        function proxied(url) {
            return PROXY_PATH + '?url=' + encodeURIComponent(url);
        }

        function load(url) {
            input.value = url;
            status.textContent = 'Loading...';
            frame.src = proxied(url);
        }

        function navigate(url, push = true) {
            if (!url) return;
            url = normalize(url);
            if (push) {
                history = history.slice(0, index + 1);
                history.push(url);
                index = history.length - 1;
            }
            load(url);
        }

        function command(target, action, payload) {
            const message = Object.assign({ type: 'PROXY_COMMAND', action: action, version: VERSION }, payload || {});
            if (target && target.contentWindow) target.contentWindow.postMessage(message, '*');
        }

        function openPopup(url, title) {
            const id = 'popup-' + Date.now() + '-' + Math.random().toString(36).slice(2, 11);
            const box = document.createElement('div');
            box.className = 'popup';
            box.innerHTML = '<header><span class="title"></span><button type="button">&times;</button></header>';
            box.querySelector('.title').textContent = title || url;
            const popupFrame = document.createElement('iframe');
            popupFrame.setAttribute('sandbox', frame.getAttribute('sandbox'));
            popupFrame.src = proxied(url);
            popupFrame.addEventListener('load', () => command(popupFrame, 'GET_TITLE_AND_FAVICON', { popupId: id }));
            box.appendChild(popupFrame);
            box.querySelector('button').addEventListener('click', () => { box.remove(); popups.delete(id); });
            document.body.appendChild(box);
            popups.set(id, { id: id, url: url, title: title, box: box });
        }

        window.addEventListener('message', (event) => {
            const data = event.data;
            if (!data || data.type !== 'PROXY_EVENT') return;
            if (!EVENTS.includes(data.action) || (data.version !== undefined && data.version !== VERSION)) {
                console.debug('[Host] ignoring malformed event', data);
                return;
            }
            switch (data.action) {
                case 'NAVIGATE':
                    if (typeof data.url === 'string') navigate(data.url);
                    break;
                case 'OPEN_POPUP':
                    if (typeof data.url === 'string') openPopup(data.url, data.title);
                    break;
                case 'LOADING_STATE':
                    status.textContent = data.isLoading ? 'Loading...' : '';
                    break;
                case 'PAGE_TITLE':
                    if (data.popupId && popups.has(data.popupId)) {
                        popups.get(data.popupId).box.querySelector('.title').textContent = data.title;
                    } else if (!data.popupId) {
                        document.title = data.title ? data.title + ' - Frame Proxy' : 'Frame Proxy';
                    }
                    break;
                case 'FAVICON':
                    if (!data.popupId) favicon.src = proxied(data.favicon);
                    break;
                case 'ERROR':
                    console.warn('[Host]', data.message);
                    break;
                case 'DEBUG':
                    console.debug('[Host]', data.message);
                    break;
            }
        });

        document.getElementById('bar').addEventListener('submit', (e) => { e.preventDefault(); navigate(input.value); });
        document.getElementById('back').addEventListener('click', () => { if (index > 0) load(history[--index]); });
        document.getElementById('forward').addEventListener('click', () => { if (index < history.length - 1) load(history[++index]); });
        document.getElementById('reload').addEventListener('click', () => { if (index >= 0) load(history[index]); });
        document.getElementById('mute').addEventListener('click', (e) => {
            muted = !muted;
            e.target.textContent = muted ? 'Unmute' : 'Mute';
            command(frame, 'TOGGLE_MUTE', { value: muted });
        });
        document.getElementById('clear').addEventListener('click', () => command(frame, 'CLEAR_BROWSING_DATA'));

        const initial = new URLSearchParams(location.search).get('url');
        if (initial) navigate(initial);
    })();
    </script>
</body>
</html>
'''


def host_page(config, version):
    return HOST_PAGE_HTML.replace('__PROXY_PATH__', config.proxy_path).replace('__VERSION__', str(version))
