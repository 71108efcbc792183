"""
Frame Proxy - transforming reverse proxy for sandboxed embedded browsing
"""
from frame_proxy.app import create_app
from frame_proxy.config import ProxyConfig, load_config

__version__ = "1.0.0"

__all__ = ["create_app", "ProxyConfig", "load_config", "__version__"]
