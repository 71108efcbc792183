"""
Proxy pipeline: fetch, classify, then rewrite or pass through.

The classifier decision is made from the response headers before a single
byte goes downstream; only the raw pass-through route streams.
"""
import logging
from urllib.parse import quote

from flask import Response, stream_with_context

from frame_proxy.classifier import Route, classify
from frame_proxy.errors import ProxyError, RewriteFailure
from frame_proxy.logs import log_request, logger
from frame_proxy.markup import rewrite_html
from frame_proxy.scripts import rewrite_script
from frame_proxy.shim import render_shim
from frame_proxy.upstream import build_proxy_request, charset_of, fetch

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS, PUT, DELETE, PATCH',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization, X-Requested-With',
    'Access-Control-Allow-Credentials': 'true',
}

PREFLIGHT_HEADERS = dict(CORS_HEADERS, **{'Access-Control-Max-Age': '86400'})

# Upstream response headers worth keeping on rewritten/pass-through responses.
# Framing headers (X-Frame-Options, CSP) are dropped so the page can be embedded.
FORWARDED_RESPONSE_HEADERS = (
    'Content-Type', 'Cache-Control', 'Expires', 'Last-Modified', 'ETag',
    'Content-Disposition', 'Content-Range', 'Accept-Ranges', 'Set-Cookie',
)


def proxy_origin_of(inbound):
    """Origin the browser sees for this proxy, honouring reverse-proxy headers"""
    forwarded_host = inbound.headers.get('X-Forwarded-Host')
    if forwarded_host:
        forwarded_proto = inbound.headers.get('X-Forwarded-Proto', 'https')
        return f"{forwarded_proto}://{forwarded_host}"
    return inbound.host_url.rstrip('/')


def forwarded_headers(upstream, content_type=None):
    wanted = {name.lower() for name in FORWARDED_RESPONSE_HEADERS}
    headers = [
        (key, value) for key, value in upstream.header_items()
        if key.lower() in wanted and not (content_type and key.lower() == 'content-type')
    ]
    if content_type:
        headers.append(('Content-Type', content_type))
    elif not upstream.content_type:
        headers.append(('Content-Type', 'application/octet-stream'))
    headers.extend(CORS_HEADERS.items())
    return headers


def render_markup(upstream, page_url, config):
    """Rewritten HTML, or the untouched body when the document defeats the parser"""
    raw = upstream.read()
    shim_js = render_shim(config, page_url)
    try:
        html = rewrite_html(raw, page_url, shim_js, config.internal_paths, charset_of(upstream.content_type))
    except RewriteFailure as e:
        logger.warning(f"HTML rewrite failed for {page_url}, serving original: {e.details}")
        return raw, None
    return html.encode('utf-8'), 'text/html; charset=utf-8'


def render_script(upstream, page_url, config, proxy_origin):
    text, encoding = upstream.text()
    js = rewrite_script(text, page_url, proxy_origin, config.proxy_path, config.internal_paths)
    return js.encode(encoding, errors='surrogateescape')


def media_redirect(target_url, config):
    location = f"{config.media_path}?url={quote(target_url, safe='')}"
    headers = [('Location', location)]
    headers.extend(CORS_HEADERS.items())
    return Response(status=302, headers=headers)


def proxy_resource(inbound, target_url, config):
    """Run one inbound /proxy request through the pipeline and build the response"""
    log_request('proxy', inbound.method, target_url)

    proxy_request = build_proxy_request(inbound, target_url, config)
    upstream = fetch(proxy_request, config)
    page_url = upstream.url or target_url
    route = classify(upstream.content_type)

    if route is Route.RAW:
        return _stream_raw(upstream, inbound.method, target_url, config)

    with upstream:
        if route is Route.MEDIA:
            log_request('proxy', inbound.method, target_url, "✓ 302 → media relay")
            return media_redirect(page_url, config)

        content_type = None
        if route is Route.MARKUP:
            body, content_type = render_markup(upstream, page_url, config)
        elif route is Route.SCRIPT:
            body = render_script(upstream, page_url, config, proxy_origin_of(inbound))
        else:
            # Route.BINARY and Route.TEXT pass through untouched
            body = upstream.read()

        log_request('proxy', inbound.method, target_url, f"✓ {route.value} {len(body)}b")
        return Response(body, status=upstream.status, headers=forwarded_headers(upstream, content_type))


def _stream_raw(upstream, method, target_url, config):
    def generate():
        try:
            for chunk in upstream.iter_body(config.chunk_size):
                yield chunk
        except ProxyError as e:
            log_request('proxy', method, target_url, f"✗ {e.details}", level=logging.ERROR)
        finally:
            upstream.close()

    log_request('proxy', method, target_url, f"✓ raw {upstream.content_type or 'unknown'}")
    response = Response(stream_with_context(generate()), status=upstream.status,
                        headers=forwarded_headers(upstream))
    response.call_on_close(upstream.close)
    return response


def preflight():
    return Response(status=200, headers=list(PREFLIGHT_HEADERS.items()))
