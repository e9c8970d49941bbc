from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from sioclient.urls import (
    Handshake,
    build_query_string,
    build_socket_url,
    encode_query_string,
    is_tls,
    normalize_namespace,
    parse_handshake,
    reconnect_delay,
)


@pytest.mark.parametrize("text", ["abc", "ABCxyz019", ""])
def test_encode_keeps_alphanumerics(text):
    assert encode_query_string(text) == text


@pytest.mark.parametrize("text", ["a b", "x&y=z", "héllo wörld", "~-_.!*", "1+1/2"])
def test_encode_round_trips_through_unquote(text):
    encoded = encode_query_string(text)
    assert unquote(encoded) == text
    assert all(c.isalnum() or c == "%" for c in encoded)


def test_encode_space_is_percent_20():
    assert encode_query_string("a b") == "a%20b"


def test_encode_uses_uppercase_hex():
    encoded = encode_query_string("\xff")
    assert encoded == encoded.upper()
    assert unquote(encoded) == "\xff"


def test_build_query_string_sorted_and_encoded():
    result = build_query_string({"b": "two words", "a": "1"})
    assert result.startswith("&a=1&b=")
    assert unquote(result.split("&b=")[1]) == "two words"


def test_build_query_string_empty():
    assert build_query_string({}) == ""
    assert build_query_string(None) == ""


@pytest.mark.parametrize(
    "uri, expected",
    [
        ("http://localhost:3000", False),
        ("ws://localhost", False),
        ("https://example.com", True),
        ("wss://example.com:8443/path", True),
        ("HTTPS://example.com", True),
    ],
)
def test_is_tls(uri, expected):
    assert is_tls(uri) is expected


@pytest.mark.parametrize("uri", ["ftp://example.com", "localhost:3000", "mailto:x"])
def test_is_tls_rejects_unknown_scheme(uri):
    with pytest.raises(ValueError):
        is_tls(uri)


@pytest.mark.parametrize(
    "nsp, expected",
    [("", "/"), ("/", "/"), ("chat", "/chat"), ("/chat", "/chat")],
)
def test_normalize_namespace(nsp, expected):
    assert normalize_namespace(nsp) == expected


def test_socket_url_default_path():
    url = build_socket_url("http://localhost:3000", "socket.io", "", "", 42)
    assert url == "ws://localhost:3000/socket.io/?EIO=4&transport=websocket&t=42"


def test_socket_url_tls_and_default_port():
    parts = urlsplit(build_socket_url("https://example.com", timestamp=7))
    assert parts.scheme == "wss"
    assert parts.port == 443
    assert parts.path == "/socket.io/"


def test_socket_url_plain_default_port():
    parts = urlsplit(build_socket_url("http://example.com", timestamp=7))
    assert parts.scheme == "ws"
    assert parts.port == 80


def test_socket_url_custom_path_overrides_resource():
    parts = urlsplit(build_socket_url("http://localhost:3000/other/", "mypath", timestamp=1))
    assert parts.path == "/mypath/"


def test_socket_url_keeps_uri_resource_with_default_path():
    parts = urlsplit(build_socket_url("http://localhost:3000/custom/", timestamp=1))
    assert parts.path == "/custom/"


def test_socket_url_sid_and_query():
    query = build_query_string({"room": "lobby"})
    url = build_socket_url("http://localhost:3000", sid="abc", query_string=query, timestamp=99)
    params = parse_qs(urlsplit(url).query)
    assert params["EIO"] == ["4"]
    assert params["transport"] == ["websocket"]
    assert params["sid"] == ["abc"]
    assert params["t"] == ["99"]
    assert params["room"] == ["lobby"]


def test_socket_url_without_sid_has_no_sid_param():
    url = build_socket_url("http://localhost:3000", timestamp=5)
    assert "sid" not in parse_qs(urlsplit(url).query)


def test_socket_url_ipv6_host_bracketed():
    url = build_socket_url("http://[::1]:3000", timestamp=1)
    assert urlsplit(url).netloc == "[::1]:3000"


def test_socket_url_bad_scheme():
    with pytest.raises(ValueError):
        build_socket_url("ftp://example.com", timestamp=1)


def test_reconnect_delay_first_attempt_is_base():
    assert reconnect_delay(5000, 25000, 0) == 5000


def test_reconnect_delay_capped_at_max():
    assert reconnect_delay(5000, 25000, 100) == 25000


def test_reconnect_delay_non_decreasing():
    delays = [reconnect_delay(1000, 10**9, n) for n in range(40)]
    assert delays == sorted(delays)
    assert delays[32] == delays[39]
    assert all(d <= 10**9 for d in delays)


def test_parse_handshake_full():
    shake = parse_handshake({"sid": "s1", "pingInterval": 100, "pingTimeout": 200})
    assert shake == Handshake(sid="s1", ping_interval=100, ping_timeout=200)


def test_parse_handshake_defaults():
    shake = parse_handshake({"sid": "s1", "pingInterval": "fast", "pingTimeout": True})
    assert shake.ping_interval == 25000
    assert shake.ping_timeout == 60000


@pytest.mark.parametrize("message", [None, [], {"pingInterval": 1}, {"sid": 5}])
def test_parse_handshake_rejects(message):
    with pytest.raises(ValueError):
        parse_handshake(message)