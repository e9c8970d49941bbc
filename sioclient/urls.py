"""Connection URL building, query encoding, reconnection delays and handshake parsing."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_PATH = "socket.io"
DEFAULT_PING_INTERVAL = 25000
DEFAULT_PING_TIMEOUT = 60000
_MAX_BACKOFF_EXPONENT = 32

_PLAIN_SCHEMES = {"http": 80, "ws": 80}
_SECURE_SCHEMES = {"https": 443, "wss": 443}


@dataclass(frozen=True)
class Handshake:
    """Session parameters the server sends in the Engine.IO open frame."""

    sid: str
    ping_interval: int = DEFAULT_PING_INTERVAL
    ping_timeout: int = DEFAULT_PING_TIMEOUT


@dataclass(frozen=True)
class _Uri:
    scheme: str
    host: str
    port: int
    resource: str


def _split_uri(uri: str) -> _Uri:
    scheme, sep, rest = uri.partition("://")
    scheme = scheme.lower()
    if not sep or scheme not in _PLAIN_SCHEMES and scheme not in _SECURE_SCHEMES:
        raise ValueError("unsupported URI scheme")
    default_port = _SECURE_SCHEMES.get(scheme) or _PLAIN_SCHEMES[scheme]

    end = len(rest)
    for marker in "/?#":
        index = rest.find(marker)
        if index >= 0:
            end = min(end, index)
    authority, resource = rest[:end], rest[end:]
    resource = resource.split("#", 1)[0]
    if not resource:
        resource = "/"
    elif resource.startswith("?"):
        resource = "/" + resource

    authority = authority.rpartition("@")[2]
    port_text = ""
    if authority.startswith("["):
        close = authority.find("]")
        if close < 0:
            raise ValueError(f"invalid IPv6 host in URI: {uri!r}")
        host = authority[1:close]
        tail = authority[close + 1:]
        if tail:
            if not tail.startswith(":"):
                raise ValueError(f"invalid authority in URI: {uri!r}")
            port_text = tail[1:]
    else:
        host, _, port_text = authority.partition(":")
    if not host:
        raise ValueError(f"URI has no host: {uri!r}")

    if port_text:
        if not port_text.isdigit() or not 0 < int(port_text) <= 65535:
            raise ValueError(f"invalid port in URI: {uri!r}")
        port = int(port_text)
    else:
        port = default_port
    return _Uri(scheme=scheme, host=host, port=port, resource=resource)


def encode_query_string(value: str) -> str:
    """Percent-encode every byte of ``value`` that is not an ASCII letter or digit."""
    out = []
    for byte in value.encode("utf-8"):
        char = chr(byte)
        if char.isascii() and char.isalnum():
            out.append(char)
        else:
            out.append(f"%{byte:02X}")
    return "".join(out)


def build_query_string(query: Optional[Mapping[str, str]]) -> str:
    """Render extra query parameters as ``&key=value`` pairs, keys in sorted order."""
    if not query:
        return ""
    return "".join(
        f"&{key}={encode_query_string(query[key])}" for key in sorted(query)
    )


def is_tls(uri: str) -> bool:
    """True for https/wss URIs, False for http/ws; other schemes raise ValueError."""
    return _split_uri(uri).scheme in _SECURE_SCHEMES


def normalize_namespace(nsp: str) -> str:
    """Make a namespace start with a slash; the empty namespace becomes ``/``."""
    if not nsp:
        return "/"
    return nsp if nsp.startswith("/") else "/" + nsp


def build_socket_url(
    uri: str,
    path: str = DEFAULT_PATH,
    sid: str = "",
    query_string: str = "",
    timestamp: Optional[int] = None,
) -> str:
    """Build the websocket URL used to open an Engine.IO v4 connection."""
    parts = _split_uri(uri)
    scheme = "wss" if parts.scheme in _SECURE_SCHEMES else "ws"
    host = f"[{parts.host}]" if ":" in parts.host else parts.host

    resource = "/socket.io/" if parts.resource == "/" else parts.resource
    if path and path != DEFAULT_PATH:
        resource = f"/{path}/"

    if timestamp is None:
        timestamp = int(time.time())
    url = f"{scheme}://{host}:{parts.port}{resource}?EIO=4&transport=websocket"
    if sid:
        url += f"&sid={sid}"
    return f"{url}&t={timestamp}{query_string}"


def reconnect_delay(delay: int, delay_max: int, attempts_made: int) -> int:
    """Delay in milliseconds before the next reconnection: exponential, capped, no jitter."""
    exponent = min(max(attempts_made, 0), _MAX_BACKOFF_EXPONENT)
    return int(min(delay * 1.5 ** exponent, delay_max))


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def parse_handshake(message: Any) -> Handshake:
    """Read the session id and ping settings from an open-frame message.

    Raises ValueError if the message is not an object holding a string ``sid``.
    """
    if not isinstance(message, dict):
        raise ValueError("handshake message is not an object")
    sid = message.get("sid")
    if not isinstance(sid, str):
        raise ValueError("handshake message has no session id")
    interval = _as_int(message.get("pingInterval"))
    timeout = _as_int(message.get("pingTimeout"))
    return Handshake(
        sid=sid,
        ping_interval=DEFAULT_PING_INTERVAL if interval is None else interval,
        ping_timeout=DEFAULT_PING_TIMEOUT if timeout is None else timeout,
    )