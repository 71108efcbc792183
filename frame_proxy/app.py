#!/usr/bin/env python3
"""
FRAME PROXY - transforming reverse proxy for sandboxed embedded browsing

Routes:
  /proxy?url=...      fetch + rewrite (GET, POST, OPTIONS)
  /rewrite?target=... same as GET /proxy
  /media?url=...      range-aware media relay (GET, HEAD, OPTIONS)
  /shim.js            the Runtime Shim injected into every page
  /                   host page
"""
from flask import Blueprint, Flask, Response, current_app, jsonify, request

from frame_proxy.config import load_config
from frame_proxy.errors import MissingURL, ProxyError
from frame_proxy.events import PROTOCOL_VERSION
from frame_proxy.logs import log_request, logger, setup_logging
from frame_proxy.media import MEDIA_CORS_HEADERS, relay_media
from frame_proxy.pages import host_page
from frame_proxy.proxy import CORS_HEADERS, preflight, proxy_resource
from frame_proxy.shim import render_shim
from frame_proxy.validator import validate_target

CONFIG_KEY = 'FRAME_PROXY'

bp = Blueprint('frame_proxy', __name__)


def _config():
    return current_app.config[CONFIG_KEY]


def _target(param='url'):
    raw = request.args.get(param)
    if raw is None or not raw.strip():
        raise MissingURL(param)
    return validate_target(raw, _config())


# =============================================================================
# PROXY ENDPOINT
# =============================================================================

def proxy():
    """Fetch, classify and rewrite the target"""
    if request.method == 'OPTIONS':
        return preflight()
    return proxy_resource(request, _target('url'), _config())


@bp.route('/rewrite')
def rewrite():
    return proxy_resource(request, _target('target'), _config())


# =============================================================================
# MEDIA RELAY
# =============================================================================

def media():
    """Range-aware relay for audio and video"""
    if request.method == 'OPTIONS':
        return Response(status=200, headers=list(MEDIA_CORS_HEADERS.items()))
    target_url = _target('url')
    return relay_media(request, target_url, _config(), request.args.get('type', 'auto'))


# =============================================================================
# SHIM + HOST PAGE
# =============================================================================

@bp.route('/shim.js')
def shim_js():
    js = render_shim(_config(), request.args.get('page', ''))
    return Response(js, mimetype='application/javascript', headers={'Access-Control-Allow-Origin': '*'})


@bp.route('/')
def index():
    return Response(host_page(_config(), PROTOCOL_VERSION), mimetype='text/html')


@bp.app_errorhandler(ProxyError)
def handle_proxy_error(error):
    log_request(request.path.strip('/') or 'host', request.method, request.url, f"✗ {error.status} {error.message}")
    response = jsonify(error.to_payload())
    response.status_code = error.status
    for key, value in CORS_HEADERS.items():
        response.headers[key] = value
    return response


def create_app(config=None):
    """Application factory; config defaults to the FRAME_PROXY_* environment"""
    config = config or load_config()
    setup_logging(config.log_file)

    app = Flask(__name__)
    app.config[CONFIG_KEY] = config
    app.register_blueprint(bp)
    app.add_url_rule(config.proxy_path, 'proxy', proxy, methods=['GET', 'POST', 'OPTIONS'])
    app.add_url_rule(config.media_path, 'media', media, methods=['GET', 'HEAD', 'OPTIONS'])
    logger.info(f"Frame proxy ready (proxy={config.proxy_path}, media={config.media_path}, "
                f"timeout={config.upstream_timeout}s, blocked={sorted(config.blocked_hosts)})")
    return app


def main():
    config = load_config()
    app = create_app(config)

    print("\n" + "=" * 70)
    print("🖼️  FRAME PROXY - Embedded browsing through a single origin")
    print("=" * 70)
    print("\nEndpoints:")
    print("  1. Host page        → /")
    print(f"  2. Proxy + rewrite  → {config.proxy_path}?url=...")
    print(f"  3. Media relay      → {config.media_path}?url=...")
    print("  4. Runtime shim     → /shim.js")
    print("=" * 70 + "\n")
    print(f"Starting server on http://{config.host}:{config.port}\n")

    app.run(host=config.host, port=config.port, debug=False, threaded=True)


if __name__ == '__main__':
    main()
