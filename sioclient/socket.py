"""A Socket.IO namespace socket: event bindings, acknowledgements and packet queueing."""

from __future__ import annotations

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .packet import Packet, PacketType

EventListener = Callable[["Event"], None]
ErrorListener = Callable[[Any], None]
AckCallback = Callable[[list], None]

DEFAULT_CONNECT_TIMEOUT = 20.0
DEFAULT_CLOSE_TIMEOUT = 3.0


class SocketOwner(Protocol):
    """What a socket needs from the connection that owns it."""

    @property
    def opened(self) -> bool: ...

    def send(self, packet: Packet) -> None: ...

    def on_socket_opened(self, nsp: str) -> None: ...

    def on_socket_closed(self, nsp: str) -> None: ...

    def remove_socket(self, nsp: str) -> None: ...


@dataclass
class Event:
    """An event received from the server, with room for an acknowledgement reply."""

    nsp: str
    name: str
    messages: list = field(default_factory=list)
    need_ack: bool = False
    ack_message: list = field(default_factory=list)

    @property
    def message(self) -> Any:
        """The first message argument, or None if the event carried none."""
        return self.messages[0] if self.messages else None

    def put_ack_message(self, ack_message: list) -> None:
        """Set the reply sent back to the server; ignored if no reply was requested."""
        if self.need_ack:
            self.ack_message = list(ack_message)


class Socket:
    """One namespace on a Socket.IO connection."""

    _event_ids = itertools.count(1)
    _event_ids_lock = threading.Lock()

    def __init__(self, client: Optional[SocketOwner], nsp: str, auth: Any = None) -> None:
        self._client = client
        self._nsp = nsp
        self._auth = auth
        self._connected = False
        self._socket_id = ""
        self._acks: dict[int, AckCallback] = {}
        self._bindings: dict[str, EventListener] = {}
        self._error_listener: Optional[ErrorListener] = None
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._queue: deque[Packet] = deque()
        self._event_lock = threading.Lock()
        self._packet_lock = threading.Lock()
        self.connect_timeout = DEFAULT_CONNECT_TIMEOUT
        self.close_timeout = DEFAULT_CLOSE_TIMEOUT
        if client is not None and client.opened:
            self._send_connect()

    @property
    def namespace(self) -> str:
        return self._nsp

    @property
    def socket_id(self) -> str:
        return self._socket_id

    @property
    def connected(self) -> bool:
        return self._connected

    # Bindings

    def on(self, event_name: str, listener: EventListener) -> None:
        """Bind a listener to an event name, replacing any previous one."""
        with self._event_lock:
            self._bindings[event_name] = listener

    def off(self, event_name: str) -> None:
        """Remove the listener for an event name, if any."""
        with self._event_lock:
            self._bindings.pop(event_name, None)

    def off_all(self) -> None:
        """Remove every event listener."""
        with self._event_lock:
            self._bindings.clear()

    def on_error(self, listener: ErrorListener) -> None:
        """Set the listener for error packets."""
        self._error_listener = listener

    def off_error(self) -> None:
        """Remove the error listener."""
        self._error_listener = None

    # Outgoing

    def close(self) -> None:
        """Leave the namespace; the socket closes once the server confirms or a timeout passes."""
        if self._client is None or not self._connected:
            return
        self._send_packet(Packet.control(PacketType.DISCONNECT, self._nsp))
        self._start_timer(self.close_timeout, self.on_close)

    def emit(
        self,
        name: str,
        messages: Optional[list] = None,
        ack: Optional[AckCallback] = None,
    ) -> None:
        """Send an event; if ``ack`` is given it receives the server's reply."""
        if self._client is None:
            return
        body = [name, *(messages or [])]
        pack_id = -1
        if ack is not None:
            with Socket._event_ids_lock:
                pack_id = next(Socket._event_ids)
            with self._event_lock:
                self._acks[pack_id] = ack
        self._send_packet(Packet.event(self._nsp, body, pack_id))

    # Notifications from the connection

    def on_connected(self) -> None:
        """The server accepted the namespace: flush queued packets."""
        self._cancel_timer()
        if self._connected or self._client is None:
            return
        self._connected = True
        client = self._client
        client.on_socket_opened(self._nsp)
        self._flush_queue(client)

    def on_close(self) -> None:
        """Close the socket for good and detach it from its connection."""
        client = self._client
        if client is None:
            return
        self._client = None
        self._cancel_timer()
        self._connected = False
        with self._packet_lock:
            self._queue.clear()
        client.on_socket_closed(self._nsp)
        client.remove_socket(self._nsp)

    def on_open(self) -> None:
        """The underlying connection opened: ask to join the namespace."""
        self._send_connect()

    def on_disconnect(self) -> None:
        """The underlying connection dropped: forget connection state and queued packets."""
        if self._client is None:
            return
        if self._connected:
            self._connected = False
            with self._packet_lock:
                self._queue.clear()

    def on_message_packet(self, packet: Packet) -> None:
        """Handle a packet addressed to this socket's namespace."""
        if self._client is None or packet.nsp != self._nsp:
            return
        kind = packet.type
        if kind == PacketType.CONNECT:
            message = packet.message
            if isinstance(message, dict) and "sid" in message:
                self._socket_id = message["sid"]
            self.on_connected()
        elif kind == PacketType.DISCONNECT:
            self.on_close()
        elif kind in (PacketType.EVENT, PacketType.BINARY_EVENT):
            message = packet.message
            if isinstance(message, list) and message and isinstance(message[0], str):
                self._on_event(packet.nsp, packet.pack_id, message[0], list(message[1:]))
        elif kind in (PacketType.ACK, PacketType.BINARY_ACK):
            message = packet.message
            args = list(message) if isinstance(message, list) else [message]
            self._on_ack(packet.pack_id, args)
        elif kind == PacketType.ERROR:
            if self._error_listener is not None:
                self._error_listener(packet.message)

    # Internals

    def _on_event(self, nsp: str, msg_id: int, name: str, messages: list) -> None:
        need_ack = msg_id >= 0
        event = Event(nsp=nsp, name=name, messages=messages, need_ack=need_ack)
        with self._event_lock:
            listener = self._bindings.get(name)
        if listener is not None:
            listener(event)
        if need_ack:
            self._send_packet(Packet.event(self._nsp, list(event.ack_message), msg_id, True))

    def _on_ack(self, msg_id: int, messages: list) -> None:
        with self._event_lock:
            callback = self._acks.pop(msg_id, None)
        if callback is not None:
            callback(messages)

    def _send_connect(self) -> None:
        client = self._client
        if client is None:
            return
        client.send(Packet.control(PacketType.CONNECT, self._nsp, self._auth))
        self._start_timer(self.connect_timeout, self._timeout_connection)

    def _timeout_connection(self) -> None:
        # No connect confirmation arrived: close, or the namespace is never requested again.
        if self._client is None:
            return
        self.on_close()

    def _send_packet(self, packet: Packet) -> None:
        client = self._client
        if client is None:
            return
        if self._connected:
            self._flush_queue(client)
            client.send(packet)
        else:
            with self._packet_lock:
                self._queue.append(packet)

    def _flush_queue(self, client: SocketOwner) -> None:
        while True:
            with self._packet_lock:
                if not self._queue:
                    return
                packet = self._queue.popleft()
            client.send(packet)

    def _start_timer(self, seconds: float, action: Callable[[], None]) -> None:
        def fire() -> None:
            with self._timer_lock:
                if self._timer is not timer:
                    return
                self._timer = None
            action()

        timer = threading.Timer(seconds, fire)
        timer.daemon = True
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        with self._timer_lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()