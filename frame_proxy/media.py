"""
Media Relay

Range-aware relay for audio/video (and anything else a player asks for).
Unlike the generic proxy endpoint it copies every upstream header back,
keeps the upstream status (206 included) and never buffers a streamed body.
"""
import logging

from flask import Response, stream_with_context

from frame_proxy.errors import ProxyError
from frame_proxy.logs import log_request
from frame_proxy.upstream import build_proxy_request, fetch

# Connection-level headers a WSGI application may not emit
HOP_BY_HOP_HEADERS = frozenset({
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailer', 'trailers', 'transfer-encoding', 'upgrade',
})

MEDIA_CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, HEAD',
    'Access-Control-Allow-Headers': 'Range, Content-Type, Origin, Accept',
    'Access-Control-Expose-Headers': 'Content-Length, Content-Range, Accept-Ranges',
}

_CORS_KEYS = frozenset(k.lower() for k in MEDIA_CORS_HEADERS)

TYPE_HINTS = ('auto', 'video', 'audio', 'image')


def relay_headers(upstream):
    """Every upstream header except hop-by-hop ones, then our CORS set on top"""
    headers = [
        (key, value) for key, value in upstream.header_items()
        if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in _CORS_KEYS
    ]
    headers.extend(MEDIA_CORS_HEADERS.items())
    return headers


def _is_buffered(type_hint, content_type):
    content_type = (content_type or '').lower()
    if type_hint == 'image':
        return True
    if type_hint in ('video', 'audio'):
        return False
    return 'image/' in content_type


def relay_media(inbound, target_url, config, type_hint='auto'):
    """Relay target_url for the inbound GET/HEAD request"""
    if type_hint not in TYPE_HINTS:
        type_hint = 'auto'

    method = 'HEAD' if inbound.method == 'HEAD' else 'GET'
    log_request('media', method, target_url)

    proxy_request = build_proxy_request(inbound, target_url, config, dest='media', method=method)
    upstream = fetch(proxy_request, config, stream=True, raise_for_status=False)
    headers = relay_headers(upstream)

    if method == 'HEAD':
        upstream.close()
        log_request('media', method, target_url, f"✓ {upstream.status}")
        return Response(status=upstream.status, headers=headers)

    if _is_buffered(type_hint, upstream.content_type):
        with upstream:
            body = upstream.read(raw=True)
        log_request('media', method, target_url, f"✓ {upstream.status} {len(body)}b")
        return Response(body, status=upstream.status, headers=headers)

    def generate():
        try:
            for chunk in upstream.iter_raw(config.chunk_size):
                yield chunk
        except ProxyError as e:
            # Headers are already on the wire; all we can do is stop
            log_request('media', method, target_url, f"✗ {e.details}", level=logging.ERROR)
        finally:
            upstream.close()

    log_request('media', method, target_url, f"✓ {upstream.status} {upstream.content_type}")
    response = Response(stream_with_context(generate()), status=upstream.status, headers=headers)
    response.call_on_close(upstream.close)
    return response
