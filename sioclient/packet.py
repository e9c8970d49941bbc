"""Socket.IO packet encoding and decoding over the Engine.IO framing."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Optional, Union

BINARY_PLACEHOLDER = "_placeholder"

Payload = Union[str, bytes, bytearray]
EncodeCallback = Callable[[bool, Union[str, bytes]], None]
DecodeCallback = Callable[["Packet"], None]

_NSP_OR_JSON = re.compile(r'[{\["/]')
_JSON_START = re.compile(r'["\[{]')
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class FrameType(IntEnum):
    """Engine.IO frame types."""

    OPEN = 0
    CLOSE = 1
    PING = 2
    PONG = 3
    MESSAGE = 4
    UPGRADE = 5
    NOOP = 6


class PacketType(IntEnum):
    """Socket.IO packet types carried inside a message frame."""

    CONNECT = 0
    DISCONNECT = 1
    EVENT = 2
    ACK = 3
    ERROR = 4
    BINARY_EVENT = 5
    BINARY_ACK = 6


_BINARY_TYPES = (PacketType.BINARY_EVENT, PacketType.BINARY_ACK)
_PACKET_CODES = {member.value for member in PacketType}


def _atoi(text: str) -> int:
    """Parse a leading integer the lenient way; anything else gives 0."""
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def _first_code(payload: Payload) -> Optional[int]:
    if not payload:
        return None
    first = payload[0]
    return ord(first) if isinstance(first, str) else first


def encode_message(message: Any, buffers: list[bytes]) -> Any:
    """Turn a message into a JSON-ready value.

    Binary parts are appended to ``buffers`` and replaced by placeholder
    objects that refer to them by index. Object keys come out sorted.
    """
    if message is None or isinstance(message, (bool, str)):
        return message
    if isinstance(message, (int, float)):
        return message
    if isinstance(message, (bytes, bytearray, memoryview)):
        placeholder = {BINARY_PLACEHOLDER: True, "num": len(buffers)}
        buffers.append(bytes(message))
        return placeholder
    if isinstance(message, (list, tuple)):
        return [encode_message(item, buffers) for item in message]
    if isinstance(message, dict):
        return {
            key: encode_message(message[key], buffers)
            for key in sorted(message)
        }
    raise TypeError(f"cannot encode message of type {type(message).__name__}")


def decode_message(value: Any, buffers: list[bytes]) -> Any:
    """Turn a parsed JSON value back into a message, resolving binary placeholders."""
    if isinstance(value, list):
        return [decode_message(item, buffers) for item in value]
    if isinstance(value, dict):
        if value.get(BINARY_PLACEHOLDER) is True:
            num = value.get("num")
            if isinstance(num, int) and not isinstance(num, bool) and 0 <= num < len(buffers):
                return bytes(buffers[num])
            return None
        return {
            key: decode_message(item, buffers)
            for key, item in value.items()
            if isinstance(key, str)
        }
    return value


def is_binary_message(payload: Payload) -> bool:
    """True if the payload starts with the raw message frame byte."""
    return _first_code(payload) == FrameType.MESSAGE


def is_text_message(payload: Payload) -> bool:
    """True if the payload starts with the textual message frame digit."""
    return _first_code(payload) == FrameType.MESSAGE + ord("0")


def is_message(payload: Payload) -> bool:
    """True if the payload is a message frame, textual or raw."""
    return is_binary_message(payload) or is_text_message(payload)


@dataclass
class Packet:
    """One Socket.IO packet, possibly awaiting binary attachments."""

    frame: FrameType = FrameType.MESSAGE
    type: Optional[PacketType] = None
    nsp: str = ""
    pack_id: int = -1
    message: Any = None
    _pending_buffers: int = field(default=0, init=False, repr=False)
    _buffers: list = field(default_factory=list, init=False, repr=False)

    @classmethod
    def event(cls, nsp: str, message: Any, pack_id: int = -1, is_ack: bool = False) -> "Packet":
        """An event or acknowledgement packet; binary variants are chosen on encode."""
        if is_ack and pack_id < 0:
            raise ValueError("an acknowledgement needs a non-negative packet id")
        return cls(
            frame=FrameType.MESSAGE,
            type=PacketType.ACK if is_ack else PacketType.EVENT,
            nsp=nsp,
            pack_id=pack_id,
            message=message,
        )

    @classmethod
    def control(cls, type: PacketType, nsp: str = "", message: Any = None) -> "Packet":
        """A message packet of the given type, such as connect or disconnect."""
        return cls(frame=FrameType.MESSAGE, type=PacketType(type), nsp=nsp, message=message)

    def parse(self, payload: Payload) -> bool:
        """Parse a text payload; return True if binary attachments must follow."""
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        if not text:
            raise ValueError("empty payload")
        try:
            self.frame = FrameType(ord(text[0]) - ord("0"))
        except ValueError:
            raise ValueError(f"unknown frame type {text[0]!r}") from None
        self.type = None
        self.message = None
        self.pack_id = -1
        self._buffers = []
        self._pending_buffers = 0

        pos = 1
        if self.frame == FrameType.MESSAGE:
            code = ord(text[1]) - ord("0") if len(text) > 1 else -1
            if code not in _PACKET_CODES:
                return False
            self.type = PacketType(code)
            pos = 2
            if self.type in _BINARY_TYPES:
                dash = text.find("-")
                count_text = text[pos:dash] if dash >= 0 else text[pos:]
                self._pending_buffers = max(_atoi(count_text), 0)
                pos = dash + 1

        start = _NSP_OR_JSON.search(text, pos)
        if start is None:
            self.nsp = "/"
            return False
        json_pos = start.start()
        if text[json_pos] == "/":
            comma = text.find(",")
            if comma < 0:
                self.nsp = text[json_pos:]
                return False
            self.nsp = text[json_pos:comma]
            pos = comma + 1
            body = _JSON_START.search(text, pos)
            if body is None:
                return False
            json_pos = body.start()
        else:
            self.nsp = "/"

        if pos < json_pos:
            self.pack_id = _atoi(text[pos:json_pos])

        if self.frame == FrameType.MESSAGE and self.type in _BINARY_TYPES:
            self._buffers.append(text[json_pos:])
            return True
        self.message = decode_message(json.loads(text[json_pos:]), [])
        return False

    def parse_buffer(self, buffer: Payload) -> bool:
        """Take one binary attachment; return True while more are expected."""
        if self._pending_buffers <= 0:
            return False
        self._buffers.append(buffer.encode("utf-8") if isinstance(buffer, str) else bytes(buffer))
        self._pending_buffers -= 1
        if self._pending_buffers:
            return True
        head, *attachments = self._buffers
        self.message = decode_message(json.loads(head), attachments)
        self._buffers = []
        return False

    def encode(self) -> tuple[str, list[bytes]]:
        """Return the text payload and the binary attachments that follow it."""
        text = str(int(self.frame))
        if self.frame != FrameType.MESSAGE:
            return text, []
        if self.type is None:
            raise ValueError("message packet has no packet type")

        buffers: list[bytes] = []
        has_message = self.message is not None
        body = encode_message(self.message, buffers) if has_message else None
        has_binary = bool(buffers)
        if self.type == PacketType.EVENT and has_binary:
            self.type = PacketType.BINARY_EVENT
        elif self.type == PacketType.ACK and has_binary:
            self.type = PacketType.BINARY_ACK

        parts = [text, str(int(self.type))]
        if has_binary:
            parts.append(f"{len(buffers)}-")
        if self.nsp and self.nsp != "/":
            parts.append(self.nsp)
            if has_message or self.pack_id >= 0:
                parts.append(",")
        if self.pack_id >= 0:
            parts.append(str(self.pack_id))
        if has_message:
            parts.append(json.dumps(body, separators=(",", ":"), ensure_ascii=False))
        return "".join(parts), buffers


class PacketManager:
    """Turns packets into payloads and reassembles incoming payloads into packets."""

    def __init__(
        self,
        on_decode: Optional[DecodeCallback] = None,
        on_encode: Optional[EncodeCallback] = None,
    ) -> None:
        self.on_decode = on_decode
        self.on_encode = on_encode
        self._partial: Optional[Packet] = None

    def encode(self, packet: Packet, callback: Optional[EncodeCallback] = None) -> None:
        """Encode a packet and hand its text payload, then each attachment, to the callback."""
        text, buffers = packet.encode()
        sink = callback or self.on_encode
        if sink is None:
            return
        sink(False, text)
        for buffer in buffers:
            sink(True, buffer)

    def put_payload(self, payload: Payload) -> None:
        """Feed one received payload; complete packets go to the decode callback."""
        if is_text_message(payload):
            packet = Packet()
            if packet.parse(payload):
                self._partial = packet
                return
        elif self._partial is not None and payload:
            if self._partial.parse_buffer(payload):
                return
            packet, self._partial = self._partial, None
        else:
            packet = Packet()
            packet.parse(payload)

        if self.on_decode is not None:
            self.on_decode(packet)

    def reset(self) -> None:
        """Drop any packet still waiting for attachments."""
        self._partial = None