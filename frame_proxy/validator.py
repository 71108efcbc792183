"""Target URL normalization and validation."""
import ipaddress
import re
import socket
from urllib.parse import urlsplit, urlunsplit

from frame_proxy.errors import ForbiddenHost, InvalidURL, MissingURL

ALLOWED_SCHEMES = ("http", "https")
_SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*:')


def normalize_target(raw):
    """Give scheme-less input a protocol, the same way the host page does.

    ``example.com`` and ``//example.com`` both become ``https://example.com``.
    """
    if raw is None:
        raise MissingURL()
    value = raw.strip()
    if not value:
        raise MissingURL()

    if value.startswith('//'):
        return 'https:' + value
    if not value.lower().startswith(('http://', 'https://')):
        # host:port has a "scheme" per the regex, so only treat it as one when
        # the rest of the string cannot be a port number
        match = _SCHEME_RE.match(value)
        if match and not re.match(r'^[^:/]+:\d+(/|$)', value):
            return value
        return 'https://' + value
    return value


# Dotted decimal/octal/hex in one to four parts, as inet_aton() reads them
_NUMERIC_HOST_RE = re.compile(r'^(0x[0-9a-f]*|[0-9]+)(\.(0x[0-9a-f]*|[0-9]+)){0,3}$', re.IGNORECASE)


def canonical_ip(host):
    """The address a resolver would connect to for an IP-literal host, else None.

    Shorthand such as ``127.1``, ``2130706433``, ``0x7f000001`` or
    ``0177.0.0.1`` all come back as ``127.0.0.1``; IPv4-mapped IPv6
    addresses come back as their IPv4 form.
    """
    if _NUMERIC_HOST_RE.match(host):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return None
    if addr.version == 6 and addr.ipv4_mapped:
        return addr.ipv4_mapped
    return addr


def _is_private_ip(addr):
    return (addr.is_loopback or addr.is_private or addr.is_link_local
            or addr.is_reserved or addr.is_unspecified or addr.is_multicast)


def is_blocked_host(host, config):
    host = host.lower().rstrip('.')
    addr = canonical_ip(host)
    if host in config.blocked_hosts or (addr is not None and str(addr) in config.blocked_hosts):
        return True
    for entry in config.blocked_hosts:
        if entry.startswith('.') and (host.endswith(entry) or host == entry[1:]):
            return True
    return config.block_private_networks and addr is not None and _is_private_ip(addr)


def validate_target(raw, config):
    """Return the fully qualified target URL or raise InvalidURL/ForbiddenHost"""
    url = normalize_target(raw)

    try:
        parts = urlsplit(url)
        host = parts.hostname
        # Accessing .port validates it
        parts.port
    except ValueError as e:
        raise InvalidURL("Invalid URL", f"{raw}: {e}")

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidURL("Invalid URL", f"Unsupported scheme '{parts.scheme}'")
    if not host:
        raise InvalidURL("Invalid URL", f"{raw}: missing host")
    if any(c.isspace() for c in parts.netloc):
        raise InvalidURL("Invalid URL", f"{raw}: whitespace in host")

    if is_blocked_host(host, config):
        raise ForbiddenHost(host)

    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path or '/', parts.query, parts.fragment))
