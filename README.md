# sioclient

A Socket.IO client library for Python that speaks Engine.IO v4 over a
WebSocket. It encodes and decodes Socket.IO packets, multiplexes namespaces,
tracks acknowledgements, carries binary attachments and reconnects with
exponential back-off when the connection drops.

## Installation

```
pip install sioclient
```

The only runtime dependency is `websocket-client`.

## Usage

```python
from sioclient.client import Client

client = Client()
client.connect(
    "http://localhost:3000",
    query={"room": "lobby"},
    headers={"X-Client": "demo"},
    auth={"token": "token"},
)

chat = client.socket("/chat")

def on_message(event):
    print(event.name, event.message)
    if event.need_ack:
        event.put_ack_message(["received"])

chat.on("message", on_message)
chat.emit("message", ["hello"], ack=lambda reply: print("server replied", reply))

client.sync_close()
```

`Client.connect` returns at once; the connection runs on a background thread.
Calling it again while connected does nothing, and an empty URI reuses the
previous one. `Client.close` closes without waiting, `Client.sync_close`
waits for the network thread to finish, and a `Client` can be used as a
context manager, which closes every socket and the connection on exit.

Messages are plain Python values: `None`, `bool`, `int`, `float`, `str`,
`bytes` (sent as a binary attachment), `list` and `dict`.

### Listeners

`Client` exposes these attributes, each a callable or `None`:

- `open_listener()` – the websocket opened
- `fail_listener()` – the connection could not be made and no retries remain
- `reconnect_listener(attempts_made, delay_ms)` – a reconnection was scheduled
- `reconnecting_listener()` – a reconnection attempt is starting
- `close_listener(reason)` – the connection closed for good, with a
  `sioclient.connection.CloseReason` (`NORMAL` or `DROP`)
- `socket_open_listener(nsp)` / `socket_close_listener(nsp)` – a namespace
  was joined or left

`clear_con_listeners()` and `clear_socket_listeners()` reset them.

On a `Socket`, `on(name, listener)` binds one listener per event name,
`off(name)` and `off_all()` remove bindings, and `on_error(listener)` /
`off_error()` handle error packets. A listener receives a
`sioclient.socket.Event` with `nsp`, `name`, `messages`, `message` (the
first argument) and `need_ack`.

### Namespaces

`Client.socket(nsp)` returns the socket for a namespace, creating it on first
use. Names are normalised, so `""` and `"/"` are the same socket, as are
`"chat"` and `"/chat"`. Packets emitted before the namespace is joined are
queued and sent once the server confirms it. A namespace that is not
confirmed within 20 seconds is closed.

### Path and TLS

`Client.path` sets the server path; when left empty the default `socket.io`
is used. `https://` and `wss://` addresses need `Client(use_tls=True)`;
certificates are only checked with `verify_tls=True`. Any other scheme than
`http`, `https`, `ws` and `wss` is rejected and reported through
`fail_listener`.

### Reconnection

When a connection drops abnormally the client retries after a delay that starts
at 5000 ms, grows by a factor of 1.5 per attempt and is capped at 25000 ms.
Set `reconnect_attempts`, `reconnect_delay` and `reconnect_delay_max` on the
client to change this; `sioclient.urls.reconnect_delay` computes the schedule.

### Packet codec and URLs

`sioclient.packet` holds the wire format on its own: `Packet.event`,
`Packet.control`, `Packet.encode`, `Packet.parse`, `Packet.parse_buffer` and
`PacketManager`, which reassembles binary packets from their text header and
attachment frames. `sioclient.urls` builds the websocket URL
(`build_socket_url`), percent-encodes query values (`encode_query_string`,
`build_query_string`) and reads the server handshake (`parse_handshake`).

### Custom transports

`Client` and `sioclient.connection.Connection` accept a `transport_factory`
called as `factory(connection, url, headers)`. The object it returns needs
`run()`, `send(data, binary)` and `close(code, reason)`, and reports back
through the connection's `handle_open`, `handle_message`, `handle_close` and
`handle_fail` methods.

## What it does not do

- Only the WebSocket transport is used; there is no HTTP long-polling
  fallback or upgrade.
- The client answers server pings but does not send pings or enforce a pong
  timeout of its own.
- It is a library only; there is no command-line program and no server.

## Running the tests

```
pip install -e ".[test]"
pytest
```