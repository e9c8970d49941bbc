"""The Engine.IO connection that carries Socket.IO namespaces over a websocket."""

from __future__ import annotations

import functools
import logging
import ssl
import threading
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol, Union

from websocket import ABNF, WebSocketApp, WebSocketException

from .packet import FrameType, Packet, PacketManager, Payload
from .socket import Socket
from .urls import (
    DEFAULT_PATH,
    build_query_string,
    build_socket_url,
    is_tls,
    normalize_namespace,
    parse_handshake,
    reconnect_delay,
)

log = logging.getLogger(__name__)

CLOSE_NORMAL = 1000
CLOSE_ABNORMAL = 1006
CLOSE_POLICY_VIOLATION = 1008

DEFAULT_RECONNECT_DELAY = 5000
DEFAULT_RECONNECT_DELAY_MAX = 25000
UNLIMITED_ATTEMPTS = 0xFFFFFFFF


class ConnectionState(Enum):
    """Lifecycle of the underlying websocket connection."""

    OPENING = "opening"
    OPENED = "opened"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(Enum):
    """Why the connection closed for good."""

    NORMAL = "normal"
    DROP = "drop"


class Transport(Protocol):
    """A websocket that reports back through the connection's ``handle_*`` methods."""

    def run(self) -> None:
        """Connect and block until the websocket is finished."""

    def send(self, data: Union[str, bytes], binary: bool) -> None: ...

    def close(self, code: int, reason: str) -> None: ...


TransportFactory = Callable[["Connection", str, dict], Transport]


class _WebSocketTransport:
    """Transport built on a websocket-client application."""

    def __init__(
        self,
        connection: "Connection",
        url: str,
        headers: Mapping[str, str],
        verify_tls: bool,
    ) -> None:
        self._connection = connection
        self._opened = False
        self._local_code: Optional[int] = None
        if verify_tls:
            self._sslopt: dict = {}
        else:
            self._sslopt = {"cert_reqs": ssl.CERT_NONE, "check_hostname": False}
        self._app = WebSocketApp(
            url,
            header=[f"{key}: {value}" for key, value in headers.items()],
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )

    def run(self) -> None:
        self._app.run_forever(sslopt=self._sslopt)

    def send(self, data: Union[str, bytes], binary: bool) -> None:
        opcode = ABNF.OPCODE_BINARY if binary else ABNF.OPCODE_TEXT
        try:
            self._app.send(data, opcode)
        except (WebSocketException, OSError) as exc:
            log.debug("send failed: %s", exc)

    def close(self, code: int, reason: str) -> None:
        self._local_code = code
        self._app.close(status=code, reason=reason.encode("utf-8"))

    def _on_open(self, _app: Any) -> None:
        self._opened = True
        self._connection.handle_open()

    def _on_message(self, _app: Any, message: Payload) -> None:
        self._connection.handle_message(message)

    def _on_error(self, _app: Any, error: Exception) -> None:
        log.debug("websocket error: %s", error)

    def _on_close(self, _app: Any, code: Optional[int], _message: Any) -> None:
        if not self._opened:
            self._connection.handle_fail()
            return
        self._connection.handle_close(self._local_code or code or CLOSE_ABNORMAL)


def websocket_transport(
    connection: "Connection",
    url: str,
    headers: Mapping[str, str],
    verify_tls: bool = False,
) -> Transport:
    """Default transport factory: a websocket-client connection."""
    return _WebSocketTransport(connection, url, headers, verify_tls)


class Connection:
    """One Engine.IO session shared by all of its namespace sockets."""

    def __init__(
        self,
        use_tls: bool = False,
        verify_tls: bool = False,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        self.use_tls = use_tls
        self.verify_tls = verify_tls
        self._transport_factory: TransportFactory = transport_factory or functools.partial(
            websocket_transport, verify_tls=verify_tls
        )

        self.open_listener: Optional[Callable[[], None]] = None
        self.fail_listener: Optional[Callable[[], None]] = None
        self.reconnecting_listener: Optional[Callable[[], None]] = None
        self.reconnect_listener: Optional[Callable[[int, int], None]] = None
        self.close_listener: Optional[Callable[[CloseReason], None]] = None
        self.socket_open_listener: Optional[Callable[[str], None]] = None
        self.socket_close_listener: Optional[Callable[[str], None]] = None

        self.reconnect_attempts = UNLIMITED_ATTEMPTS
        self._reconnect_delay = DEFAULT_RECONNECT_DELAY
        self._reconnect_delay_max = DEFAULT_RECONNECT_DELAY_MAX
        self._reconnects_made = 0

        self.ping_interval = 0
        self.ping_timeout = 0

        self._state = ConnectionState.CLOSED
        self._lock = threading.RLock()
        self._socket_lock = threading.Lock()
        self._sockets: dict[str, Socket] = {}
        self._transport: Optional[Transport] = None
        self._thread: Optional[threading.Thread] = None
        self._pending_reconnect: Optional[tuple[int, threading.Event]] = None

        self._sid = ""
        self._base_url = ""
        self._query_string = ""
        self._headers: dict[str, str] = {}
        self._auth: Any = None
        self._path = DEFAULT_PATH
        self._packets = PacketManager(on_decode=self._on_decode, on_encode=self._send_impl)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._sockets_invoke(Socket.on_close)
        self.sync_close()

    # State

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def opened(self) -> bool:
        return self._state is ConnectionState.OPENED

    @property
    def session_id(self) -> str:
        return self._sid

    @property
    def current_url(self) -> str:
        return self._base_url

    @property
    def reconnect_delay(self) -> int:
        """Base reconnection delay in milliseconds; raises the maximum if needed."""
        return self._reconnect_delay

    @reconnect_delay.setter
    def reconnect_delay(self, millis: int) -> None:
        self._reconnect_delay = millis
        if self._reconnect_delay_max < millis:
            self._reconnect_delay_max = millis

    @property
    def reconnect_delay_max(self) -> int:
        """Maximum reconnection delay in milliseconds; lowers the base delay if needed."""
        return self._reconnect_delay_max

    @reconnect_delay_max.setter
    def reconnect_delay_max(self, millis: int) -> None:
        self._reconnect_delay_max = millis
        if self._reconnect_delay > millis:
            self._reconnect_delay = millis

    # Public operations

    def connect(
        self,
        uri: str = "",
        query: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Any = None,
        path: str = DEFAULT_PATH,
    ) -> None:
        """Start connecting in the background; does nothing while already connected."""
        self._cancel_reconnect()
        thread = self._thread
        if thread is not None:
            if self._state not in (ConnectionState.CLOSING, ConnectionState.CLOSED):
                return
            if thread is not threading.current_thread():
                thread.join()
            self._thread = None

        with self._lock:
            self._state = ConnectionState.OPENING
            self._reconnects_made = 0
        if uri:
            self._base_url = uri
        self._query_string = build_query_string(query)
        self._headers = dict(headers or {})
        self._auth = auth
        if path:
            self._path = path
        self._reset_states()

        self._thread = threading.Thread(
            target=self._run_loop,
            args=(self._base_url, self._query_string),
            name="sioclient-network",
            daemon=True,
        )
        self._thread.start()

    def socket(self, nsp: str = "") -> Socket:
        """Return the socket for a namespace, creating it if needed."""
        name = normalize_namespace(nsp)
        with self._socket_lock:
            existing = self._sockets.get(name)
            if existing is not None:
                return existing
            created = Socket(self, name, self._auth)
            self._sockets[name] = created
            return created

    def close(self) -> None:
        """Close every namespace and the connection, without waiting."""
        with self._lock:
            self._state = ConnectionState.CLOSING
        self._sockets_invoke(Socket.close)
        self._close_impl(CLOSE_NORMAL, "End by user")

    def sync_close(self) -> None:
        """Close and wait for the network thread to finish."""
        self.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
            self._thread = None

    def clear_con_listeners(self) -> None:
        """Drop the connection-level listeners."""
        self.open_listener = None
        self.fail_listener = None
        self.reconnecting_listener = None
        self.reconnect_listener = None
        self.close_listener = None

    def clear_socket_listeners(self) -> None:
        """Drop the namespace open and close listeners."""
        self.socket_open_listener = None
        self.socket_close_listener = None

    # Used by sockets

    def send(self, packet: Packet) -> None:
        """Encode a packet and send it if the connection is open."""
        self._packets.encode(packet)

    def remove_socket(self, nsp: str) -> None:
        with self._socket_lock:
            self._sockets.pop(nsp, None)

    def on_socket_opened(self, nsp: str) -> None:
        if self.socket_open_listener is not None:
            self.socket_open_listener(nsp)

    def on_socket_closed(self, nsp: str) -> None:
        if self.socket_close_listener is not None:
            self.socket_close_listener(nsp)

    # Transport events

    def handle_open(self) -> None:
        """The websocket opened."""
        with self._lock:
            closing = self._state is ConnectionState.CLOSING
            if not closing:
                self._state = ConnectionState.OPENED
                self._reconnects_made = 0
        if closing:
            self.close()
            return
        self._sockets_invoke(Socket.on_open)
        self.socket("")
        if self.open_listener is not None:
            self.open_listener()

    def handle_fail(self) -> None:
        """The websocket could not be opened."""
        with self._lock:
            closing = self._state is ConnectionState.CLOSING
            if not closing:
                self._transport = None
                self._state = ConnectionState.CLOSED
        if closing:
            self.close()
            return
        self._sockets_invoke(Socket.on_disconnect)
        if self._reconnects_made < self.reconnect_attempts:
            self._schedule_reconnect()
        elif self.fail_listener is not None:
            self.fail_listener()

    def handle_close(self, close_code: Optional[int] = None) -> None:
        """The websocket closed with the given local close code."""
        with self._lock:
            was = self._state
            self._state = ConnectionState.CLOSED
            self._transport = None
        code = CLOSE_NORMAL if close_code is None else close_code
        self._sockets_invoke(Socket.on_disconnect)
        # A close we asked for counts as normal whatever the code says.
        if code == CLOSE_NORMAL or was is ConnectionState.CLOSING:
            reason = CloseReason.NORMAL
        elif self._reconnects_made < self.reconnect_attempts:
            self._schedule_reconnect()
            return
        else:
            reason = CloseReason.DROP
        if self.close_listener is not None:
            self.close_listener(reason)

    def handle_message(self, payload: Payload) -> None:
        """A websocket message arrived; raises ValueError if it cannot be parsed."""
        self._packets.put_payload(payload)

    # Internals

    def _run_loop(self, uri: str, query_string: str) -> None:
        self._connect_impl(uri, query_string)
        while True:
            with self._lock:
                pending = self._pending_reconnect
            if pending is None:
                return
            delay, cancelled = pending
            if cancelled.wait(delay / 1000):
                continue
            with self._lock:
                if self._pending_reconnect is not pending:
                    continue
                self._pending_reconnect = None
                if self._state is not ConnectionState.CLOSED:
                    return
                self._state = ConnectionState.OPENING
                self._reconnects_made += 1
            self._reset_states()
            if self.reconnecting_listener is not None:
                self.reconnecting_listener()
            self._connect_impl(uri, query_string)

    def _connect_impl(self, uri: str, query_string: str) -> None:
        try:
            secure = is_tls(uri)
            url = build_socket_url(uri, self._path, self._sid, query_string)
        except ValueError as exc:
            log.warning("cannot connect to %r: %s", uri, exc)
            self._notify_fail()
            return
        if secure and not self.use_tls:
            log.warning("cannot connect to %r: TLS is not enabled", uri)
            self._notify_fail()
            return
        transport = self._transport_factory(self, url, dict(self._headers))
        with self._lock:
            self._transport = transport
        transport.run()
        with self._lock:
            if self._transport is transport:
                self._transport = None

    def _notify_fail(self) -> None:
        if self.fail_listener is not None:
            self.fail_listener()

    def _close_impl(self, code: int, reason: str) -> None:
        self._cancel_reconnect()
        with self._lock:
            transport = self._transport
        if transport is None:
            log.debug("no active session to close: %s", reason)
            return
        transport.close(code, reason)

    def _send_impl(self, is_binary: bool, payload: Union[str, bytes]) -> None:
        with self._lock:
            transport = self._transport if self._state is ConnectionState.OPENED else None
        if transport is not None:
            transport.send(payload, is_binary)

    def _send_direct(self, is_binary: bool, payload: Union[str, bytes]) -> None:
        with self._lock:
            transport = self._transport
        if transport is not None:
            transport.send(payload, is_binary)

    def _schedule_reconnect(self) -> None:
        delay = reconnect_delay(
            self._reconnect_delay, self._reconnect_delay_max, self._reconnects_made
        )
        if self.reconnect_listener is not None:
            self.reconnect_listener(self._reconnects_made, delay)
        with self._lock:
            self._pending_reconnect = (delay, threading.Event())

    def _cancel_reconnect(self) -> None:
        with self._lock:
            pending, self._pending_reconnect = self._pending_reconnect, None
        if pending is not None:
            pending[1].set()

    def _reset_states(self) -> None:
        self._sid = ""
        self._packets.reset()

    def _sockets_invoke(self, action: Callable[[Socket], None]) -> None:
        with self._socket_lock:
            sockets = [self._sockets[name] for name in sorted(self._sockets)]
        for sock in sockets:
            action(sock)

    def _on_decode(self, packet: Packet) -> None:
        if packet.frame == FrameType.MESSAGE:
            with self._socket_lock:
                target = self._sockets.get(packet.nsp)
            if target is not None:
                target.on_message_packet(packet)
        elif packet.frame == FrameType.OPEN:
            self._on_handshake(packet.message)
        elif packet.frame == FrameType.CLOSE:
            self._close_impl(CLOSE_ABNORMAL, "End by server")
        elif packet.frame == FrameType.PING:
            self._packets.encode(Packet(frame=FrameType.PONG), self._send_direct)

    def _on_handshake(self, message: Any) -> None:
        try:
            handshake = parse_handshake(message)
        except ValueError:
            self._close_impl(CLOSE_POLICY_VIOLATION, "Handshake error")
            return
        self._sid = handshake.sid
        self.ping_interval = handshake.ping_interval
        self.ping_timeout = handshake.ping_timeout