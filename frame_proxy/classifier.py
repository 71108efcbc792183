"""Route an upstream response by its Content-Type."""
from enum import Enum


class Route(Enum):
    MARKUP = "markup"
    SCRIPT = "script"
    BINARY = "binary"
    MEDIA = "media"
    TEXT = "text"
    RAW = "raw"


BINARY_MARKERS = ('image/', 'font/', 'application/font', 'application/octet-stream', 'application/pdf')
MEDIA_MARKERS = ('video/', 'audio/')
TEXT_MARKERS = ('application/json', 'text/')


def classify(content_type):
    # Order matters: text/javascript is a script, text/html is markup
    content_type = (content_type or '').lower()

    if 'text/html' in content_type:
        return Route.MARKUP
    if 'javascript' in content_type:
        return Route.SCRIPT
    if any(marker in content_type for marker in BINARY_MARKERS):
        return Route.BINARY
    if any(marker in content_type for marker in MEDIA_MARKERS):
        return Route.MEDIA
    if any(marker in content_type for marker in TEXT_MARKERS):
        return Route.TEXT
    return Route.RAW
