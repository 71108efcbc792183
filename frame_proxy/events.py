"""
Event Protocol between an embedded page and its host.

Messages are plain objects sent with ``window.postMessage``. Every message has
``type`` (the channel), ``action``, ``version`` and action-specific fields at
the top level. ``popupId`` doubles as the correlation id for popup-scoped
replies.

The schema below is the single source of truth: the Runtime Shim receives it
serialized as JSON and validates inbound commands against it.
"""
from collections import namedtuple

PROTOCOL_VERSION = 1

EVENT_CHANNEL = "PROXY_EVENT"
COMMAND_CHANNEL = "PROXY_COMMAND"
CHANNELS = (EVENT_CHANNEL, COMMAND_CHANNEL)

CORRELATION_FIELD = "popupId"

# field name -> (type name, required)
EVENT_ACTIONS = {
    "NAVIGATE": {"url": ("string", True)},
    "OPEN_POPUP": {"url": ("string", True), "title": ("string", False)},
    "LOADING_STATE": {"isLoading": ("boolean", True)},
    "PAGE_TITLE": {"title": ("string", True), "popupId": ("string", False)},
    "ERROR": {"message": ("string", True)},
    "FAVICON": {"favicon": ("string", True), "popupId": ("string", False)},
    "DEBUG": {"message": ("string", True)},
}

COMMAND_ACTIONS = {
    "GET_TITLE": {"popupId": ("string", False)},
    "GET_TITLE_AND_FAVICON": {"popupId": ("string", False)},
    "TOGGLE_MUTE": {"value": ("boolean", True)},
    "CLEAR_BROWSING_DATA": {},
}

SCHEMA = {
    "version": PROTOCOL_VERSION,
    EVENT_CHANNEL: EVENT_ACTIONS,
    COMMAND_CHANNEL: COMMAND_ACTIONS,
}

_PY_TYPES = {
    "string": str,
    "boolean": bool,
}

EventMessage = namedtuple("EventMessage", "channel action payload correlation_id version")


class MalformedMessage(ValueError):
    pass


def _check_field(action, name, value, type_name):
    expected = _PY_TYPES[type_name]
    if not isinstance(value, expected):
        raise MalformedMessage(f"{action}.{name} must be a {type_name}, got {type(value).__name__}")


def parse_message(data):
    """Validate a decoded message and return it as an EventMessage.

    Unknown extra fields are ignored; missing required fields, wrong field
    types, unknown actions and unknown channels raise MalformedMessage.
    """
    if not isinstance(data, dict):
        raise MalformedMessage("message must be an object")

    channel = data.get("type")
    if channel not in CHANNELS:
        raise MalformedMessage(f"unknown channel {channel!r}")

    version = data.get("version", PROTOCOL_VERSION)
    if version != PROTOCOL_VERSION:
        raise MalformedMessage(f"unsupported protocol version {version!r}")

    actions = SCHEMA[channel]
    action = data.get("action")
    if action not in actions:
        raise MalformedMessage(f"unknown {channel} action {action!r}")

    payload = {}
    for name, (type_name, required) in actions[action].items():
        if name not in data or data[name] is None:
            if required:
                raise MalformedMessage(f"{action} requires '{name}'")
            continue
        _check_field(action, name, data[name], type_name)
        payload[name] = data[name]

    return EventMessage(channel, action, payload, payload.get(CORRELATION_FIELD), version)


def _build(channel, action, payload):
    message = {"type": channel, "action": action, "version": PROTOCOL_VERSION}
    message.update({k: v for k, v in payload.items() if v is not None})
    # Round-trip through the validator so callers can never build a bad message
    parse_message(message)
    return message


def make_event(action, **payload):
    return _build(EVENT_CHANNEL, action, payload)


def make_command(action, **payload):
    return _build(COMMAND_CHANNEL, action, payload)
