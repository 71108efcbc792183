"""
Runtime Shim injected into every rewritten page.

The script runs inside the proxied document (which lives on the proxy's
origin) and
  - wraps window.open, fetch and XMLHttpRequest.open,
  - captures anchor clicks and GET form submissions,
  - routes media elements and late-inserted iframes through the proxy,
  - replays <meta http-equiv="refresh"> as a NAVIGATE event,
  - reports load state, title, favicon and resource errors to the host,
  - answers PROXY_COMMAND messages from the host.

Every wrapped property goes through install(), which remembers the original so
window.__frameProxy.restore() (also run on pagehide) can put it back.
"""
import json

from frame_proxy.events import COMMAND_CHANNEL, EVENT_CHANNEL, PROTOCOL_VERSION, SCHEMA
from frame_proxy.markup import SHIM_MARKER

CONFIG_PLACEHOLDER = '__FRAME_PROXY_CONFIG__'

SHIM_TEMPLATE = r'''
(function () {
  'use strict';
  if (window.__frameProxy) { return; }

  var CONFIG = __FRAME_PROXY_CONFIG__;
  var EVENT = CONFIG.eventChannel;
  var COMMAND = CONFIG.commandChannel;
  var state = 'Initializing';
  var installed = [];
  var listeners = [];
  var observers = [];

  function log() {
    var args = Array.prototype.slice.call(arguments);
    args.unshift('[Frame Proxy]');
    console.log.apply(console, args);
  }

  function install(target, prop, wrap) {
    var original = target[prop];
    target[prop] = wrap(original);
    installed.push({ target: target, prop: prop, original: original });
    return original;
  }

  function listen(target, type, handler, capture) {
    target.addEventListener(type, handler, !!capture);
    listeners.push({ target: target, type: type, handler: handler, capture: !!capture });
  }

  function restore() {
    state = 'Unloading';
    while (installed.length) {
      var entry = installed.pop();
      try { entry.target[entry.prop] = entry.original; } catch (e) { log('restore failed for', entry.prop, e); }
    }
    while (listeners.length) {
      var l = listeners.pop();
      l.target.removeEventListener(l.type, l.handler, l.capture);
    }
    while (observers.length) { observers.pop().disconnect(); }
  }

  function post(action, payload) {
    var message = { type: EVENT, action: action, version: CONFIG.version };
    Object.keys(payload || {}).forEach(function (key) {
      if (payload[key] !== undefined && payload[key] !== null) { message[key] = payload[key]; }
    });
    try {
      window.parent.postMessage(message, '*');
    } catch (e) {
      console.error('[Frame Proxy] postMessage failed:', e);
    }
  }

  // ---- URL helpers --------------------------------------------------------

  // The injected <base> only carries the origin; relative URLs resolve
  // against the page unless the page declared a <base> of its own
  function baseHref() {
    var base = document.querySelector('base[href]');
    if (base && !base.hasAttribute(CONFIG.marker)) { return document.baseURI; }
    return CONFIG.pageUrl || document.baseURI;
  }

  function pageHref() {
    return CONFIG.pageUrl || location.href;
  }

  function resolveAbsolute(url) {
    try {
      return new URL(url, baseHref()).href;
    } catch (e) {
      return url;
    }
  }

  function isInternal(raw) {
    for (var i = 0; i < CONFIG.internalPaths.length; i++) {
      var path = CONFIG.internalPaths[i];
      if (raw === path || raw.indexOf(path + '?') === 0 ||
          raw.indexOf(location.origin + path + '?') === 0) {
        return true;
      }
    }
    return false;
  }

  function isMedia(absolute) {
    var path = absolute.pathname.toLowerCase();
    return CONFIG.mediaExtensions.some(function (ext) { return path.slice(-ext.length) === ext; });
  }

  function endpoint(path, absoluteHref) {
    return location.origin + path + '?url=' + encodeURIComponent(absoluteHref);
  }

  // Returns the proxied URL for raw, or null when raw must be left alone
  function route(raw, forceEndpoint) {
    if (!raw || typeof raw !== 'string') { return null; }
    if (/^\s*(data|blob|about|javascript):/i.test(raw) || isInternal(raw)) { return null; }
    var absolute = new URL(raw, baseHref());
    if (absolute.protocol !== 'http:' && absolute.protocol !== 'https:') { return null; }
    if (absolute.origin === location.origin) { return null; }
    var path = forceEndpoint || (isMedia(absolute) ? CONFIG.mediaPath : CONFIG.proxyPath);
    return endpoint(path, absolute.href);
  }

  // ---- Network interceptors ------------------------------------------------

  function patchFetch() {
    if (typeof window.fetch !== 'function') { return; }
    install(window, 'fetch', function (originalFetch) {
      return function (input, init) {
        try {
          var raw = typeof input === 'string' ? input
            : (input instanceof URL ? input.href : (input && input.url));
          var routed = route(raw);
          if (routed) {
            if (typeof Request !== 'undefined' && input instanceof Request) {
              return originalFetch.call(window, new Request(routed, input), init);
            }
            return originalFetch.call(window, routed, init);
          }
        } catch (e) {
          console.error('[Frame Proxy] fetch interception failed:', e);
        }
        return originalFetch.apply(window, arguments);
      };
    });
  }

  function patchXhr() {
    if (typeof XMLHttpRequest === 'undefined') { return; }
    install(XMLHttpRequest.prototype, 'open', function (originalOpen) {
      return function (method, url) {
        var args = Array.prototype.slice.call(arguments);
        try {
          var routed = route(typeof url === 'string' ? url : (url && url.href));
          if (routed) { args[1] = routed; }
        } catch (e) {
          console.error('[Frame Proxy] XHR interception failed:', e);
        }
        return originalOpen.apply(this, args);
      };
    });
  }

  function popupStub(url) {
    return {
      closed: false,
      location: { href: url },
      close: function () { this.closed = true; },
      focus: function () {},
      blur: function () {},
      postMessage: function () {}
    };
  }

  function patchWindowOpen() {
    install(window, 'open', function () {
      return function (url) {
        if (!url) { return null; }
        var absolute = resolveAbsolute(String(url));
        post('OPEN_POPUP', { url: absolute, title: document.title });
        return popupStub(absolute);
      };
    });
  }

  // ---- Navigation -----------------------------------------------------------

  function onClick(e) {
    var link = e.target && e.target.closest ? e.target.closest('a[href]') : null;
    if (!link || link.hasAttribute('download')) { return; }
    var href = (link.getAttribute('href') || '').trim();
    if (href.charAt(0) === '#' || /^(javascript|data):/i.test(href)) { return; }
    // An empty href names the page itself
    var url = href ? resolveAbsolute(href) : pageHref();
    if (!/^https?:/i.test(url)) { return; }
    e.preventDefault();
    post('NAVIGATE', { url: url });
  }

  function onSubmit(e) {
    var form = e.target;
    if (!form || form.tagName !== 'FORM') { return; }
    var method = (form.getAttribute('method') || 'get').toLowerCase();
    var action = resolveAbsolute((form.getAttribute('action') || '').trim() || pageHref());

    if (method !== 'get') {
      // Non-GET submissions are posted through the proxy endpoint
      var routed = route(action, CONFIG.proxyPath);
      if (routed) { form.setAttribute('action', routed); }
      return;
    }

    var url = new URL(action);
    var data;
    try {
      data = e.submitter ? new FormData(form, e.submitter) : new FormData(form);
    } catch (err) {
      data = new FormData(form);
    }
    data.forEach(function (value, key) {
      if (typeof value === 'string') { url.searchParams.append(key, value); }
    });
    e.preventDefault();
    post('NAVIGATE', { url: url.href });
  }

  function replayMetaRefresh() {
    var metas = document.querySelectorAll('meta[http-equiv]');
    for (var i = 0; i < metas.length; i++) {
      if (metas[i].getAttribute('http-equiv').toLowerCase() !== 'refresh') { continue; }
      var content = metas[i].getAttribute('content') || '';
      var match = content.match(/url\s*=\s*['"]?([^'"]+?)['"]?\s*$/i);
      if (!match) { continue; }
      var target = resolveAbsolute(match[1]);
      var delay = parseInt(content, 10) || 0;
      setTimeout(function () { post('NAVIGATE', { url: target }); }, delay * 1000);
      return;
    }
  }

  // ---- Media and frames -----------------------------------------------------

  function relayMedia(media) {
    if (!media.hasAttribute('controls')) { media.setAttribute('controls', 'true'); }
    var changed = false;
    var sources = media.querySelectorAll('source[src]');
    for (var i = 0; i < sources.length; i++) {
      var routedSource = route(sources[i].getAttribute('src'), CONFIG.mediaPath);
      if (routedSource) { sources[i].setAttribute('src', routedSource); changed = true; }
    }
    var routed = route(media.getAttribute('src'), CONFIG.mediaPath);
    if (routed) { media.setAttribute('src', routed); changed = true; }
    if (changed && typeof media.load === 'function') { media.load(); }
  }

  function relayFrame(frame) {
    var routed = route(frame.getAttribute('src'), CONFIG.proxyPath);
    if (routed) { frame.setAttribute('src', routed); }
  }

  function treat(node) {
    if (!node || node.nodeType !== 1) { return; }
    var name = node.nodeName;
    try {
      if (name === 'VIDEO' || name === 'AUDIO') { relayMedia(node); }
      else if (name === 'IFRAME') { relayFrame(node); }
      if (node.querySelectorAll) {
        var nested = node.querySelectorAll('video, audio, iframe');
        for (var i = 0; i < nested.length; i++) { treat(nested[i]); }
      }
    } catch (e) {
      console.error('[Frame Proxy] media relay failed:', e);
    }
  }

  function onReady() {
    treat(document.body || document.documentElement);
    replayMetaRefresh();
  }

  function observeInsertions() {
    if (!window.MutationObserver) { return; }
    var observer = new MutationObserver(function (mutations) {
      mutations.forEach(function (mutation) {
        if (mutation.type === 'childList') {
          mutation.addedNodes.forEach(treat);
        }
      });
    });
    observer.observe(document.documentElement, { childList: true, subtree: true });
    observers.push(observer);
  }

  // ---- Page state reporting -------------------------------------------------

  function discoverFavicon() {
    try {
      var icon = document.querySelector('link[rel~="icon"]');
      if (icon && icon.getAttribute('href')) { return resolveAbsolute(icon.getAttribute('href')); }
    } catch (e) {
      log('favicon lookup failed', e);
    }
    return resolveAbsolute('/favicon.ico');
  }

  function onLoad() {
    post('LOADING_STATE', { isLoading: false });
    post('PAGE_TITLE', { title: document.title });
    setTimeout(function () { post('FAVICON', { favicon: discoverFavicon() }); }, CONFIG.settleDelayMs);
  }

  function onResourceError(e) {
    var t = e.target;
    if (t && (t.tagName === 'IMG' || t.tagName === 'SCRIPT' || t.tagName === 'LINK')) {
      post('ERROR', { message: 'Error loading resource: ' + (t.src || t.href) });
    }
  }

  // ---- Host commands ----------------------------------------------------------

  function validate(data) {
    var actions = CONFIG.schema[COMMAND];
    if (data.version !== undefined && data.version !== CONFIG.version) {
      return 'unsupported protocol version ' + data.version;
    }
    if (!Object.prototype.hasOwnProperty.call(actions, data.action)) {
      return 'unknown action ' + data.action;
    }
    var fields = actions[data.action];
    for (var name in fields) {
      var rule = fields[name];
      var value = data[name];
      if (value === undefined || value === null) {
        if (rule[1]) { return data.action + ' requires ' + name; }
      } else if (typeof value !== rule[0]) {
        return data.action + '.' + name + ' must be a ' + rule[0];
      }
    }
    return null;
  }

  function clearBrowsingData() {
    try { localStorage.clear(); } catch (e) { log('localStorage not cleared', e); }
    try { sessionStorage.clear(); } catch (e) { log('sessionStorage not cleared', e); }
    try {
      document.cookie.split(';').forEach(function (cookie) {
        var eq = cookie.indexOf('=');
        var name = (eq > -1 ? cookie.substr(0, eq) : cookie).trim();
        if (name) { document.cookie = name + '=;expires=Thu, 01 Jan 1970 00:00:00 GMT;path=/'; }
      });
    } catch (e) {
      log('cookies not cleared', e);
    }
    try {
      document.querySelectorAll('img').forEach(function (img) {
        if (img.src) {
          var src = img.src;
          img.src = '';
          setTimeout(function () { img.src = src; }, 10);
        }
      });
    } catch (e) {
      log('images not reloaded', e);
    }
  }

  var handlers = {
    GET_TITLE: function (data) {
      post('PAGE_TITLE', { title: document.title, popupId: data.popupId });
    },
    GET_TITLE_AND_FAVICON: function (data) {
      post('PAGE_TITLE', { title: document.title, popupId: data.popupId });
      post('FAVICON', { favicon: discoverFavicon(), popupId: data.popupId });
    },
    TOGGLE_MUTE: function (data) {
      try {
        document.querySelectorAll('video, audio').forEach(function (media) { media.muted = data.value; });
      } catch (e) {
        log('mute toggle failed', e);
      }
    },
    CLEAR_BROWSING_DATA: clearBrowsingData
  };

  function onMessage(event) {
    var data = event.data;
    if (!data || typeof data !== 'object' || data.type !== COMMAND) { return; }
    if (event.source && event.source !== window.parent) { return; }
    var problem = validate(data);
    if (problem) {
      post('DEBUG', { message: 'Ignored malformed command: ' + problem });
      return;
    }
    handlers[data.action](data);
  }

  // ---- Lifecycle ------------------------------------------------------------

  function activate() {
    patchWindowOpen();
    patchFetch();
    patchXhr();
    listen(document, 'click', onClick, true);
    listen(document, 'submit', onSubmit, true);
    listen(window, 'error', onResourceError, true);
    listen(window, 'message', onMessage, false);
    listen(window, 'load', onLoad, false);
    observeInsertions();
    if (document.readyState === 'loading') {
      listen(document, 'DOMContentLoaded', onReady, false);
    } else {
      onReady();
    }
    state = 'Active';
  }

  window.addEventListener('pagehide', restore);
  window.addEventListener('pageshow', function (e) {
    if (e.persisted && state === 'Unloading') { activate(); }
  });

  window.__frameProxy = {
    version: CONFIG.version,
    state: function () { return state; },
    restore: restore
  };

  activate();
})();
'''


def shim_config(config, page_url):
    return {
        'version': PROTOCOL_VERSION,
        'eventChannel': EVENT_CHANNEL,
        'commandChannel': COMMAND_CHANNEL,
        'schema': SCHEMA,
        'proxyPath': config.proxy_path,
        'mediaPath': config.media_path,
        'internalPaths': list(config.internal_paths),
        'mediaExtensions': list(config.media_extensions),
        'settleDelayMs': config.settle_delay_ms,
        'pageUrl': page_url,
        'marker': SHIM_MARKER,
    }


def render_shim(config, page_url=''):
    """Shim source with its configuration inlined.

    '<' is escaped so nothing in the config can close the surrounding
    <script> element.
    """
    payload = json.dumps(shim_config(config, page_url), sort_keys=True).replace('<', '\\u003c')
    return SHIM_TEMPLATE.replace(CONFIG_PLACEHOLDER, payload)
