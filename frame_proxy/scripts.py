"""
Script Rewriter

Best-effort static rewrite of literal fetch()/XHR.open() call sites inside
externally fetched JavaScript. URLs built at runtime are left to the Runtime
Shim, which patches fetch and XMLHttpRequest.open in the page itself.
"""
import re
from urllib.parse import quote, urljoin

from frame_proxy.markup import is_internal_path

HTTP_METHODS = 'GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS'

# fetch("https://..."), fetch('//cdn...'), fetch(`/api/x`)
FETCH_RE = re.compile(r'''(\bfetch\s*\(\s*)(['"`])((?:https?:)?//[^'"`\s]+|/(?!/)[^'"`\s]*)\2''')
# xhr.open("GET", "https://...")
XHR_OPEN_RE = re.compile(
    r'''(\.open\s*\(\s*(['"`])(?:''' + HTTP_METHODS + r''')\2\s*,\s*)(['"`])((?:https?:)?//[^'"`\s]+|/(?!/)[^'"`\s]*)\3''',
    re.IGNORECASE,
)


def proxy_fetch_url(absolute_url, proxy_origin, proxy_path='/proxy'):
    return f"{proxy_origin}{proxy_path}?url={quote(absolute_url, safe='')}"


def _route(literal, quote_char, base_url, proxy_origin, proxy_path, internal_paths):
    """Return the replacement literal, or None to leave the call site alone"""
    if quote_char == '`' and '${' in literal:
        return None
    if is_internal_path(literal, internal_paths):
        return None

    absolute = urljoin(base_url, literal)
    if absolute.startswith(proxy_origin + '/'):
        return None
    return proxy_fetch_url(absolute, proxy_origin, proxy_path)


def rewrite_script(js, base_url, proxy_origin, proxy_path='/proxy', internal_paths=('/proxy', '/media')):
    """Route literal network call sites in js through the proxy fetch endpoint.

    base_url is the URL the script was fetched from; root-relative and
    protocol-relative literals are resolved against it.
    """
    def replace_fetch(match):
        routed = _route(match.group(3), match.group(2), base_url, proxy_origin, proxy_path, internal_paths)
        if routed is None:
            return match.group(0)
        return f"{match.group(1)}{match.group(2)}{routed}{match.group(2)}"

    def replace_open(match):
        routed = _route(match.group(4), match.group(3), base_url, proxy_origin, proxy_path, internal_paths)
        if routed is None:
            return match.group(0)
        return f"{match.group(1)}{match.group(3)}{routed}{match.group(3)}"

    js = FETCH_RE.sub(replace_fetch, js)
    return XHR_OPEN_RE.sub(replace_open, js)
