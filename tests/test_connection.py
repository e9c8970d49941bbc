import threading

import pytest

from sioclient.connection import CloseReason, Connection, ConnectionState


class FakeTransport:
    def __init__(self, connection, url, headers, drop=False):
        self.connection = connection
        self.url = url
        self.headers = headers
        self.drop = drop
        self.sent = []
        self.close_args = None
        self._closed = threading.Event()

    def run(self):
        self.connection.handle_open()
        if self.drop:
            self.connection.handle_close(1006)
            return
        self._closed.wait(5)
        code = self.close_args[0] if self.close_args else 1006
        self.connection.handle_close(code)

    def send(self, data, binary):
        self.sent.append((binary, data))

    def close(self, code, reason):
        self.close_args = (code, reason)
        self._closed.set()


class Factory:
    def __init__(self, drops=0):
        self.transports = []
        self.drops = drops

    def __call__(self, connection, url, headers):
        transport = FakeTransport(
            connection, url, headers, drop=len(self.transports) < self.drops
        )
        self.transports.append(transport)
        return transport


def _open(factory, uri="http://localhost:3000", use_tls=False, **connect_kwargs):
    conn = Connection(use_tls=use_tls, transport_factory=factory)
    opened = threading.Event()
    conn.open_listener = opened.set
    conn.connect(uri, **connect_kwargs)
    assert opened.wait(2)
    return conn


def test_connect_builds_url_and_sends_namespace_connect():
    factory = Factory()
    conn = _open(factory, query={"token": "token"}, headers={"X-Test": "1"})
    transport = factory.transports[0]
    assert transport.url.startswith(
        "ws://localhost:3000/socket.io/?EIO=4&transport=websocket&t="
    )
    assert transport.url.endswith("&token=token")
    assert transport.headers == {"X-Test": "1"}
    assert conn.opened
    assert (False, "40") in transport.sent
    assert conn.current_url == "http://localhost:3000"
    conn.sync_close()


def test_sync_close_closes_normally():
    factory = Factory()
    conn = _open(factory)
    reasons = []
    conn.close_listener = reasons.append
    conn.sync_close()
    assert factory.transports[0].close_args == (1000, "End by user")
    assert reasons == [CloseReason.NORMAL]
    assert conn.state is ConnectionState.CLOSED


def test_context_manager_closes_connection():
    factory = Factory()
    with Connection(transport_factory=factory) as conn:
        opened = threading.Event()
        conn.open_listener = opened.set
        conn.connect("http://localhost:3000")
        assert opened.wait(2)
    assert not conn.opened
    assert factory.transports[0].close_args == (1000, "End by user")


def test_handshake_sets_session_values():
    conn = Connection(transport_factory=Factory())
    conn.handle_message('0{"sid":"abc","pingInterval":100,"pingTimeout":200}')
    assert conn.session_id == "abc"
    assert conn.ping_interval == 100
    assert conn.ping_timeout == 200


def test_handshake_defaults_for_missing_ping_values():
    conn = Connection(transport_factory=Factory())
    conn.handle_message('0{"sid":"abc"}')
    assert conn.ping_interval == 25000
    assert conn.ping_timeout == 60000


def test_bad_handshake_closes_with_policy_violation():
    factory = Factory()
    conn = Connection(transport_factory=factory)
    conn.reconnect_attempts = 0
    opened = threading.Event()
    closed = threading.Event()
    reasons = []

    def on_close(reason):
        reasons.append(reason)
        closed.set()

    conn.open_listener = opened.set
    conn.close_listener = on_close
    conn.connect("http://localhost:3000")
    assert opened.wait(2)
    conn.handle_message('0{"nope":1}')
    assert closed.wait(2)
    assert factory.transports[0].close_args == (1008, "Handshake error")
    assert reasons == [CloseReason.DROP]
    conn.sync_close()


def test_ping_is_answered_with_pong():
    factory = Factory()
    conn = _open(factory)
    conn.handle_message("2")
    assert (False, "3") in factory.transports[0].sent
    conn.sync_close()


def test_namespace_packets_reach_socket():
    factory = Factory()
    conn = _open(factory)
    opened_namespaces = []
    conn.socket_open_listener = opened_namespaces.append
    conn.handle_message('40{"sid":"xyz"}')
    sock = conn.socket("")
    assert sock.connected
    assert sock.socket_id == "xyz"
    assert opened_namespaces == ["/"]

    events = []
    sock.on("hi", events.append)
    conn.handle_message('42["hi",1]')
    assert [event.messages for event in events] == [[1]]
    conn.sync_close()


def test_emit_sends_event_once_connected():
    factory = Factory()
    conn = _open(factory)
    conn.handle_message("40")
    conn.socket("/").emit("ping", [1])
    assert factory.transports[0].sent[-1] == (False, '42["ping",1]')
    conn.sync_close()


def test_socket_namespace_is_normalized_and_shared():
    conn = Connection(transport_factory=Factory())
    chat = conn.socket("chat")
    assert chat is conn.socket("/chat")
    assert chat.namespace == "/chat"
    assert conn.socket("").namespace == "/"


def test_remove_socket_forgets_it():
    conn = Connection(transport_factory=Factory())
    first = conn.socket("/chat")
    conn.remove_socket("/chat")
    assert conn.socket("/chat") is not first
    assert conn.socket("/chat").namespace == "/chat"


def test_fail_schedules_reconnect_with_default_delay():
    conn = Connection(transport_factory=Factory())
    calls = []
    conn.reconnect_listener = lambda made, delay: calls.append((made, delay))
    conn.handle_fail()
    assert calls == [(0, 5000)]
    assert conn.state is ConnectionState.CLOSED
    conn.close()


def test_fail_without_attempts_calls_fail_listener():
    conn = Connection(transport_factory=Factory())
    conn.reconnect_attempts = 0
    failures = []
    conn.fail_listener = lambda: failures.append(True)
    conn.handle_fail()
    assert failures == [True]


def test_handle_close_normal_code():
    conn = Connection(transport_factory=Factory())
    reasons = []
    conn.close_listener = reasons.append
    conn.handle_close(1000)
    assert reasons == [CloseReason.NORMAL]


def test_handle_close_abnormal_without_attempts_is_drop():
    conn = Connection(transport_factory=Factory())
    conn.reconnect_attempts = 0
    reasons = []
    conn.close_listener = reasons.append
    conn.handle_close(1006)
    assert reasons == [CloseReason.DROP]


def test_reconnect_delay_bounds_follow_each_other():
    conn = Connection(transport_factory=Factory())
    conn.reconnect_delay = 30000
    assert conn.reconnect_delay_max == 30000
    conn.reconnect_delay_max = 1000
    assert conn.reconnect_delay == 1000


def test_unsupported_scheme_fails_without_transport():
    factory = Factory()
    conn = Connection(transport_factory=factory)
    failed = threading.Event()
    conn.fail_listener = failed.set
    conn.connect("ftp://localhost")
    assert failed.wait(2)
    assert factory.transports == []
    conn.sync_close()


def test_tls_url_needs_tls_enabled():
    factory = Factory()
    conn = Connection(transport_factory=factory)
    failed = threading.Event()
    conn.fail_listener = failed.set
    conn.connect("https://example.com")
    assert failed.wait(2)
    assert factory.transports == []
    conn.sync_close()


def test_tls_url_with_tls_uses_wss():
    factory = Factory()
    conn = _open(factory, uri="https://example.com", use_tls=True)
    assert factory.transports[0].url.startswith("wss://example.com:443/socket.io/")
    conn.sync_close()


def test_reconnects_after_drop():
    factory = Factory(drops=1)
    conn = Connection(transport_factory=factory)
    conn.reconnect_delay = 10
    opens = []
    second_open = threading.Event()
    reconnects = []
    reconnecting = []

    def on_open():
        opens.append(True)
        if len(opens) == 2:
            second_open.set()

    conn.open_listener = on_open
    conn.reconnect_listener = lambda made, delay: reconnects.append((made, delay))
    conn.reconnecting_listener = lambda: reconnecting.append(True)
    conn.connect("http://localhost:3000")
    assert second_open.wait(2)
    assert reconnects == [(0, 10)]
    assert reconnecting == [True]
    assert len(factory.transports) == 2
    conn.sync_close()
    assert factory.transports[1].close_args == (1000, "End by user")


def test_clear_con_listeners_silences_callbacks():
    conn = Connection(transport_factory=Factory())
    reasons = []
    conn.close_listener = reasons.append
    conn.clear_con_listeners()
    conn.handle_close(1000)
    assert reasons == []
    assert conn.close_listener is None


def test_clear_socket_listeners():
    conn = Connection(transport_factory=Factory())
    names = []
    conn.socket_open_listener = names.append
    conn.clear_socket_listeners()
    conn.on_socket_opened("/")
    assert names == []


def test_invalid_payload_raises():
    conn = Connection(transport_factory=Factory())
    with pytest.raises(ValueError):
        conn.handle_message("x")