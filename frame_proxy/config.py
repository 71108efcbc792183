"""Runtime configuration for the proxy.

The config object is immutable and is handed to every request explicitly;
nothing in the request path reads module-level mutable state.
"""
import os
from dataclasses import dataclass, field, replace
from typing import Optional

# Configuration defaults
DEFAULT_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 8192
DEFAULT_BLOCKED_HOSTS = frozenset({
    "localhost",
    "127.0.0.1",
    "::1",
    "0.0.0.0",
    "internal.company.com",
})
DEFAULT_MEDIA_EXTENSIONS = (
    ".mp4", ".webm", ".mp3", ".ogg", ".m4a", ".wav", ".avi", ".mov", ".flv",
)


@dataclass(frozen=True)
class ProxyConfig:
    blocked_hosts: frozenset = DEFAULT_BLOCKED_HOSTS
    block_private_networks: bool = True
    upstream_timeout: float = DEFAULT_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    proxy_path: str = "/proxy"
    media_path: str = "/media"
    media_extensions: tuple = DEFAULT_MEDIA_EXTENSIONS
    settle_delay_ms: int = 100
    log_file: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 5000
    internal_paths: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Normalized once so lookups in the validator are plain set hits
        object.__setattr__(
            self, "blocked_hosts",
            frozenset(h.strip().lower().strip("[]") for h in self.blocked_hosts if h.strip()),
        )
        object.__setattr__(self, "internal_paths", (self.proxy_path, self.media_path))

    def with_overrides(self, **changes):
        return replace(self, **changes)


def _env_flag(value):
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(environ=None):
    """Build a ProxyConfig from FRAME_PROXY_* environment variables."""
    environ = os.environ if environ is None else environ
    overrides = {}

    hosts = environ.get("FRAME_PROXY_BLOCKED_HOSTS")
    if hosts is not None:
        overrides["blocked_hosts"] = frozenset(h for h in hosts.split(",") if h.strip())

    if "FRAME_PROXY_ALLOW_PRIVATE" in environ:
        overrides["block_private_networks"] = not _env_flag(environ["FRAME_PROXY_ALLOW_PRIVATE"])

    if "FRAME_PROXY_TIMEOUT" in environ:
        timeout = float(environ["FRAME_PROXY_TIMEOUT"])
        if timeout <= 0:
            raise ValueError(f"FRAME_PROXY_TIMEOUT must be positive, got {timeout}")
        overrides["upstream_timeout"] = timeout

    if environ.get("FRAME_PROXY_LOG_FILE"):
        overrides["log_file"] = environ["FRAME_PROXY_LOG_FILE"]

    if environ.get("FRAME_PROXY_HOST"):
        overrides["host"] = environ["FRAME_PROXY_HOST"]

    if environ.get("FRAME_PROXY_PORT"):
        overrides["port"] = int(environ["FRAME_PROXY_PORT"])

    return ProxyConfig(**overrides)
