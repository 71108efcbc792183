"""Error taxonomy for the proxy pipeline.

Every error carries the HTTP status it maps to; the Flask error handler in
``frame_proxy.app`` turns them into ``{"error": ..., "details": ...}`` payloads.
"""


class ProxyError(Exception):
    status = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self):
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingURL(ProxyError):
    status = 400

    def __init__(self, param="url"):
        super().__init__("No URL provided", f"Missing '{param}' query parameter")


class InvalidURL(ProxyError):
    status = 400


class ForbiddenHost(ProxyError):
    status = 403

    def __init__(self, host):
        super().__init__("Access to this domain is not allowed", host)
        self.host = host


class UpstreamError(ProxyError):
    """Upstream answered with a non-2xx status; that status is surfaced as-is."""

    def __init__(self, status, status_text=""):
        super().__init__(f"Failed to fetch: {status} {status_text}".rstrip())
        self.status = status
        self.status_text = status_text


class UpstreamTimeout(ProxyError):
    status = 504

    def __init__(self, details="The request took too long to complete"):
        super().__init__("Request timed out", details)


class NetworkError(ProxyError):
    status = 500

    def __init__(self, details):
        super().__init__("Failed to fetch the requested URL", details)


class RewriteFailure(ProxyError):
    """Raised by rewriters; the dispatcher falls back to the unrewritten body."""
