"""
Outbound side of the proxy: browser-like request headers, cookie/referer
forwarding and a bounded fetch that always releases its connection.
"""
import socket
import time
from collections import namedtuple
from urllib.parse import parse_qs, urljoin, urlsplit

import requests
from urllib3.exceptions import HTTPError as Urllib3Error, ReadTimeoutError

from frame_proxy.errors import NetworkError, ProxyError, UpstreamError, UpstreamTimeout
from frame_proxy.logs import logger
from frame_proxy.validator import validate_target

CHROME_UA = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
FIREFOX_UA = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/115.0'

DOCUMENT_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7'

# Request headers taken from the inbound request as-is
FORWARDED_HEADERS = ('Cookie', 'Range', 'Content-Type')

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
MAX_REDIRECTS = 10

ProxyRequest = namedtuple('ProxyRequest', 'target_url method headers body')


def pick_user_agent(inbound_ua):
    """Firefox clients get a Firefox UA, everything else looks like Chrome"""
    if inbound_ua and 'Firefox/' in inbound_ua and 'Seamonkey/' not in inbound_ua:
        return FIREFOX_UA
    return CHROME_UA


def browser_headers(inbound_ua=None, dest='document'):
    """Header set that resembles a real browser navigation or subresource fetch"""
    headers = {
        'User-Agent': pick_user_agent(inbound_ua),
        'Accept-Language': 'en-US,en;q=0.9',
        'Cache-Control': 'no-cache',
        'Pragma': 'no-cache',
        'Sec-Ch-Ua': '"Not_A Brand";v="8", "Chromium";v="120"',
        'Sec-Ch-Ua-Mobile': '?0',
        'Sec-Ch-Ua-Platform': '"Windows"',
    }
    if dest == 'document':
        headers.update({
            'Accept': DOCUMENT_ACCEPT,
            'Sec-Fetch-Dest': 'document',
            'Sec-Fetch-Mode': 'navigate',
            'Sec-Fetch-Site': 'none',
            'Sec-Fetch-User': '?1',
            'Upgrade-Insecure-Requests': '1',
        })
    else:
        headers.update({
            'Accept': '*/*',
            # Media is relayed byte-for-byte, so ask for it unencoded
            'Accept-Encoding': 'identity',
            'Sec-Fetch-Dest': 'empty',
            'Sec-Fetch-Mode': 'cors',
            'Sec-Fetch-Site': 'cross-site',
        })
    return headers


def unwrap_referer(referer, internal_paths=('/proxy', '/media')):
    """
    If the referring page was itself proxied, its URL looks like
    ``https://proxy/proxy?url=<original>``. Upstream must see <original>.
    """
    if not referer:
        return None
    try:
        parts = urlsplit(referer)
    except ValueError:
        return referer

    if parts.path.rstrip('/') in internal_paths or parts.path == '/rewrite':
        params = parse_qs(parts.query)
        for name in ('url', 'target'):
            original = params.get(name)
            if original and original[0].lower().startswith(('http://', 'https://')):
                return original[0]
    return referer


def build_proxy_request(inbound, target_url, config, dest='document', method=None):
    """Turn the inbound Flask request into the outbound ProxyRequest"""
    headers = browser_headers(inbound.headers.get('User-Agent'), dest)

    for name in FORWARDED_HEADERS:
        value = inbound.headers.get(name)
        if value:
            headers[name] = value

    referer = unwrap_referer(inbound.headers.get('Referer'), config.internal_paths)
    if referer:
        headers['Referer'] = referer

    method = (method or inbound.method).upper()
    body = inbound.get_data() if method in ('POST', 'PUT', 'PATCH', 'DELETE') else None
    return ProxyRequest(target_url, method, headers, body)


def charset_of(content_type):
    for param in (content_type or '').split(';')[1:]:
        key, _, value = param.strip().partition('=')
        if key.lower() == 'charset' and value:
            return value.strip('"\' ')
    return None


def _is_read_timeout(error):
    """requests wraps mid-body read timeouts in ConnectionError; unwrap them"""
    if isinstance(error, (requests.exceptions.Timeout, ReadTimeoutError, socket.timeout)):
        return True
    return any(isinstance(arg, ReadTimeoutError) for arg in getattr(error, 'args', ()))


class UpstreamResponse:
    """
    Owned by exactly one request pipeline. Whoever holds it must call close()
    (or use it as a context manager) on every exit path.

    ``deadline`` is a time.monotonic() instant; read() gives up with
    UpstreamTimeout once it has passed.
    """

    def __init__(self, resp, deadline=None, chunk_size=8192):
        self._resp = resp
        self._body = None
        self.deadline = deadline
        self.chunk_size = chunk_size
        self.status = resp.status_code
        self.reason = resp.reason or ''
        self.url = resp.url
        self.headers = resp.headers
        self.content_type = resp.headers.get('Content-Type', '')

    def header_items(self):
        """All header lines in order, keeping repeats such as Set-Cookie apart"""
        raw_headers = getattr(self._resp.raw, 'headers', None)
        if raw_headers is not None and hasattr(raw_headers, 'iteritems'):
            return list(raw_headers.iteritems())
        return list(self.headers.items())

    def header_values(self, name):
        name = name.lower()
        return [value for key, value in self.header_items() if key.lower() == name]

    def iter_body(self, chunk_size):
        try:
            for chunk in self._resp.iter_content(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as e:
            if _is_read_timeout(e):
                raise UpstreamTimeout()
            raise NetworkError(str(e))

    def iter_raw(self, chunk_size):
        """Body exactly as sent by upstream, without undoing any Content-Encoding"""
        raw = self._resp.raw
        if not hasattr(raw, 'stream'):
            yield from self.iter_body(chunk_size)
            return
        try:
            for chunk in raw.stream(chunk_size, decode_content=False):
                if chunk:
                    yield chunk
        except (ReadTimeoutError, socket.timeout):
            raise UpstreamTimeout()
        except (Urllib3Error, OSError) as e:
            raise NetworkError(str(e))

    def expired(self):
        return self.deadline is not None and time.monotonic() >= self.deadline

    def read(self, raw=False):
        """Whole body, bounded by the fetch deadline. ``raw`` keeps Content-Encoding."""
        if self._body is None:
            chunks = []
            source = self.iter_raw if raw else self.iter_body
            for chunk in source(self.chunk_size):
                chunks.append(chunk)
                if self.expired():
                    raise UpstreamTimeout()
            self._body = b''.join(chunks)
        return self._body

    def text(self):
        """Body decoded losslessly, paired with the encoding used"""
        body = self.read()
        encoding = charset_of(self.content_type) or 'utf-8'
        try:
            return body.decode(encoding, errors='surrogateescape'), encoding
        except LookupError:
            return body.decode('utf-8', errors='surrogateescape'), 'utf-8'

    def close(self):
        self._resp.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def _send(method, url, headers, body, stream, config):
    try:
        return requests.request(
            method=method,
            url=url,
            headers=headers,
            data=body,
            allow_redirects=False,
            stream=stream,
            timeout=config.upstream_timeout,
        )
    except requests.exceptions.Timeout as e:
        logger.error(f"Upstream timeout for {url}: {e}")
        raise UpstreamTimeout()
    except requests.exceptions.RequestException as e:
        logger.error(f"Error fetching {url}: {e}")
        raise NetworkError(str(e))


def redirected_request(status, method, headers, body, old_url, new_url):
    """Method, headers and body for the next hop, following browser rules"""
    headers = dict(headers)
    if (status == 303 and method != 'HEAD') or (status in (301, 302) and method == 'POST'):
        method, body = 'GET', None
        headers.pop('Content-Type', None)
    if urlsplit(old_url).netloc.lower() != urlsplit(new_url).netloc.lower():
        headers.pop('Cookie', None)
    return method, headers, body


def fetch(proxy_request, config, stream=True, raise_for_status=True):
    """Issue the outbound request, following redirects one validated hop at a time.

    Every Location is checked against the host blocklist before it is
    requested. Raises UpstreamTimeout, NetworkError, InvalidURL,
    ForbiddenHost, or UpstreamError for non-2xx responses when
    raise_for_status is set.
    """
    deadline = time.monotonic() + config.upstream_timeout
    method, url = proxy_request.method, proxy_request.target_url
    headers, body = proxy_request.headers, proxy_request.body

    resp = _send(method, url, headers, body, stream, config)
    hops = 0
    while resp.status_code in REDIRECT_STATUSES and resp.headers.get('Location'):
        location = resp.headers['Location']
        resp.close()
        if hops >= MAX_REDIRECTS:
            raise NetworkError(f"Exceeded {MAX_REDIRECTS} redirects starting at {proxy_request.target_url}")
        hops += 1
        try:
            next_url = validate_target(urljoin(resp.url or url, location), config)
        except ProxyError:
            logger.warning(f"Refusing redirect from {url} to {location}")
            raise
        method, headers, body = redirected_request(resp.status_code, method, headers, body, url, next_url)
        url = next_url
        if time.monotonic() >= deadline:
            raise UpstreamTimeout()
        resp = _send(method, url, headers, body, stream, config)

    upstream = UpstreamResponse(resp, deadline, config.chunk_size)
    if raise_for_status and not 200 <= upstream.status < 300:
        upstream.close()
        raise UpstreamError(upstream.status, upstream.reason)
    return upstream
