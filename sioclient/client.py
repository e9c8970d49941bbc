"""The public Socket.IO client: a thin front over one Engine.IO connection."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .connection import Connection, ConnectionState, TransportFactory
from .socket import Socket


class _Forwarded:
    """An attribute read from and written to the client's connection."""

    def __set_name__(self, owner: type, name: str) -> None:
        self._name = name

    def __get__(self, obj: Optional["Client"], objtype: Optional[type] = None) -> Any:
        if obj is None:
            return self
        return getattr(obj._connection, self._name)

    def __set__(self, obj: "Client", value: Any) -> None:
        setattr(obj._connection, self._name, value)


class Client:
    """A Socket.IO client that owns one connection and its namespace sockets."""

    open_listener = _Forwarded()
    fail_listener = _Forwarded()
    reconnecting_listener = _Forwarded()
    reconnect_listener = _Forwarded()
    close_listener = _Forwarded()
    socket_open_listener = _Forwarded()
    socket_close_listener = _Forwarded()

    reconnect_attempts = _Forwarded()
    reconnect_delay = _Forwarded()
    reconnect_delay_max = _Forwarded()

    def __init__(
        self,
        use_tls: bool = False,
        verify_tls: bool = False,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self._connection = Connection(use_tls, verify_tls, transport_factory)
        self.path = ""

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._connection.__exit__(*exc_info)

    @property
    def opened(self) -> bool:
        """True while the underlying connection is open."""
        return self._connection.opened

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def url(self) -> str:
        """The base URL of the current or last connection."""
        return self._connection.current_url

    @property
    def session_id(self) -> str:
        """The Engine.IO session id from the server handshake, empty before it."""
        return self._connection.session_id

    def connect(
        self,
        uri: str = "",
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Any = None,
    ) -> None:
        """Connect in the background; an empty URI reuses the previous one."""
        self._connection.connect(uri, query, headers, auth, self.path)

    def socket(self, nsp: str = "") -> Socket:
        """Return the socket for a namespace, creating it if needed."""
        return self._connection.socket(nsp)

    def close(self) -> None:
        """Close the connection without waiting."""
        self._connection.close()

    def sync_close(self) -> None:
        """Close the connection and wait for its network thread to end."""
        self._connection.sync_close()

    def clear_con_listeners(self) -> None:
        """Drop the open, fail, reconnect and close listeners."""
        self._connection.clear_con_listeners()

    def clear_socket_listeners(self) -> None:
        """Drop the namespace open and close listeners."""
        self._connection.clear_socket_listeners()