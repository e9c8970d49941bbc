"""Socket.IO v4 client: packet codec, namespaced sockets, connection and reconnection."""

__version__ = "0.1.0"
__all__ = ["packet", "socket", "urls", "connection", "client"]