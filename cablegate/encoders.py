"""Encoding of outgoing messages into WebSocket frames, with per-encoder caching."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Protocol

from .common import Message, _dump_json

JSON_ENCODER_ID = "json"


class FrameType(IntEnum):
    """Kind of WebSocket frame to send."""

    TEXT = 0
    CLOSE = 1
    BINARY = 2


@dataclass(frozen=True)
class SentFrame:
    """A frame ready to be written to a connection."""

    frame_type: FrameType
    payload: bytes


class EncodingError(Exception):
    """Raised when a message cannot be encoded."""


class EncodedMessage(Protocol):
    def message_type(self) -> str: ...

    def to_dict(self) -> dict[str, Any]: ...


class Encoder(Protocol):
    def encoder_id(self) -> str: ...

    def encode(self, msg: EncodedMessage) -> SentFrame: ...

    def encode_transmission(self, msg: str) -> SentFrame: ...

    def decode(self, raw: bytes | str) -> Message: ...


EncodingFunction = Callable[[EncodedMessage], "SentFrame | None"]


def message_to_json(msg: EncodedMessage) -> bytes:
    """Serialize a message to compact JSON bytes."""
    return _dump_json(msg.to_dict()).encode("utf-8")


class EncodingCache:
    """Remembers the encoded form of one message per encoder."""

    def __init__(self) -> None:
        self._encoded: dict[str, SentFrame | None] = {}

    def fetch(
        self, msg: EncodedMessage, encoder: str, callback: EncodingFunction
    ) -> SentFrame:
        """Return the cached frame, encoding with callback on first use."""
        if encoder not in self._encoded:
            try:
                self._encoded[encoder] = callback(msg)
            except (EncodingError, ValueError, TypeError):
                self._encoded[encoder] = None

        frame = self._encoded[encoder]
        if frame is None:
            raise EncodingError("Encoding failed")
        return frame


class CachedEncodedMessage:
    """Wraps a message so that each encoder encodes it only once."""

    def __init__(self, target: EncodedMessage) -> None:
        self.target = target
        self._cache = EncodingCache()

    def message_type(self) -> str:
        return self.target.message_type()

    def fetch(self, encoder_id: str, callback: EncodingFunction) -> SentFrame:
        return self._cache.fetch(self.target, encoder_id, callback)

    def to_dict(self) -> dict[str, Any]:
        return self.target.to_dict()


def _string_field(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


class JSONEncoder:
    """Encodes and decodes messages as JSON text frames."""

    def encoder_id(self) -> str:
        return JSON_ENCODER_ID

    def encode(self, msg: EncodedMessage) -> SentFrame:
        return SentFrame(FrameType.TEXT, message_to_json(msg))

    def encode_transmission(self, msg: str) -> SentFrame:
        return SentFrame(FrameType.TEXT, msg.encode("utf-8"))

    def decode(self, raw: bytes | str) -> Message:
        decoded = json.loads(raw)
        if decoded is None:
            decoded = {}
        if not isinstance(decoded, dict):
            raise ValueError("client message must be a JSON object")
        return Message(
            command=_string_field(decoded, "command"),
            identifier=_string_field(decoded, "identifier"),
            data=decoded.get("data"),
        )