"""Shared messages, results and session state used across the server."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class Status(IntEnum):
    """Result status of a controller call."""

    SUCCESS = 0
    FAILURE = 1
    ERROR = 2


ACTION_CABLE_V1_JSON = "actioncable-v1-json"

WELCOME_TYPE = "welcome"
PING_TYPE = "ping"
DISCONNECT_TYPE = "disconnect"
CONFIRMED_TYPE = "confirm_subscription"
REJECTED_TYPE = "reject_subscription"
UNSUBSCRIBED_TYPE = "unsubscribed"

SERVER_RESTART_REASON = "server_restart"
REMOTE_DISCONNECT_REASON = "remote"
IDLE_TIMEOUT_REASON = "idle_timeout"
UNAUTHORIZED_REASON = "unauthorized"

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _dump_json(value: Any) -> str:
    """Serialize compactly, escaping HTML-sensitive characters."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _JSON_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


def _canonical(value: Any) -> Any:
    """Return the value with every mapping's keys sorted, recursively."""
    if isinstance(value, dict):
        return {key: _canonical(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [_canonical(item) for item in value]
    return value


def action_cable_protocols() -> list[str]:
    """Return the supported WebSocket sub-protocols."""
    return [ACTION_CABLE_V1_JSON]


@dataclass
class SessionEnv:
    """HTTP connection data plus connection and channel state."""

    url: str = ""
    headers: dict[str, str] | None = None
    identifiers: str = ""
    connection_state: dict[str, str] | None = field(default_factory=dict)
    channel_states: dict[str, dict[str, str]] = field(default_factory=dict)

    def merge_connection_state(self, other: dict[str, str]) -> None:
        """Merge values into the connection state; empty values delete keys."""
        if self.connection_state is None:
            self.connection_state = {}
        for key, value in other.items():
            if value == "":
                self.connection_state.pop(key, None)
            else:
                self.connection_state[key] = value

    def merge_channel_state(self, identifier: str, other: dict[str, str]) -> None:
        """Merge values into a channel's state; empty values delete keys."""
        state = self.channel_states.setdefault(identifier, {})
        for key, value in other.items():
            if value == "":
                state.pop(key, None)
            else:
                state[key] = value

    def get_channel_state_field(self, identifier: str, field: str) -> str:
        """Return a channel state value, or an empty string."""
        return self.channel_states.get(identifier, {}).get(field, "")

    def get_connection_state_field(self, field: str) -> str:
        """Return a connection state value, or an empty string."""
        if self.connection_state is None:
            return ""
        return self.connection_state.get(field, "")

    def set_header(self, key: str, value: str) -> None:
        """Add or replace a request header."""
        if self.headers is None:
            self.headers = {}
        self.headers[key] = value


@dataclass
class CallResult:
    """Fields shared by every controller call result."""

    transmissions: list[str] = field(default_factory=list)
    broadcasts: list[StreamMessage] = field(default_factory=list)
    cstate: dict[str, str] | None = None
    istate: dict[str, str] | None = None


@dataclass
class ConnectResult:
    """Result of authenticating a connection."""

    identifier: str = ""
    transmissions: list[str] = field(default_factory=list)
    broadcasts: list[StreamMessage] = field(default_factory=list)
    cstate: dict[str, str] | None = None
    istate: dict[str, str] | None = None
    status: Status = Status.SUCCESS

    def to_call_result(self) -> CallResult:
        return CallResult(self.transmissions, self.broadcasts, self.cstate, self.istate)


@dataclass
class CommandResult:
    """Result of a channel command: streams, transmissions and broadcasts."""

    stop_all_streams: bool = False
    disconnect: bool = False
    streams: list[str] = field(default_factory=list)
    stopped_streams: list[str] = field(default_factory=list)
    transmissions: list[str] = field(default_factory=list)
    broadcasts: list[StreamMessage] = field(default_factory=list)
    cstate: dict[str, str] | None = None
    istate: dict[str, str] | None = None
    status: Status = Status.SUCCESS

    def to_call_result(self) -> CallResult:
        return CallResult(self.transmissions, self.broadcasts, self.cstate, self.istate)


@dataclass
class Message:
    """An incoming client command."""

    command: str = ""
    identifier: str = ""
    data: Any = None


@dataclass
class StreamMessage:
    """A pub/sub message addressed to a stream."""

    stream: str = ""
    data: str = ""

    def to_reply_for(self, identifier: str) -> Reply:
        """Build the reply sent to subscribers of the given channel."""
        try:
            message = json.loads(self.data)
        except ValueError:
            message = None
        if message is None:
            message = self.data
        return Reply(identifier=identifier, message=message)


@dataclass
class RemoteCommandMessage:
    """A pub/sub message carrying a remote command."""

    command: str = ""
    payload: Any = None


@dataclass
class RemoteDisconnectMessage:
    """Which sessions to disconnect, and whether they may reconnect."""

    identifier: str = ""
    reconnect: bool = False


@dataclass
class PingMessage:
    """A server ping."""

    type: str = PING_TYPE
    message: Any = None

    def message_type(self) -> str:
        return PING_TYPE

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        if self.message is not None:
            result["message"] = _canonical(self.message)
        return result


@dataclass
class DisconnectMessage:
    """A server disconnect notice."""

    reason: str = ""
    reconnect: bool = False
    type: str = DISCONNECT_TYPE

    def message_type(self) -> str:
        return DISCONNECT_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "reason": self.reason, "reconnect": self.reconnect}


@dataclass
class Reply:
    """An outgoing client message."""

    type: str = ""
    identifier: str = ""
    message: Any = None
    reason: str = ""
    reconnect: bool = False

    def message_type(self) -> str:
        return self.type

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.type:
            result["type"] = self.type
        if self.identifier:
            result["identifier"] = self.identifier
        if self.message is not None:
            result["message"] = _canonical(self.message)
        if self.reason:
            result["reason"] = self.reason
        if self.reconnect:
            result["reconnect"] = True
        return result


def _typed_field(obj: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = obj.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise ValueError(f"field {key!r} must be of type {kind.__name__}")
    return value


def pubsub_message_from_json(
    raw: bytes | str,
) -> StreamMessage | RemoteDisconnectMessage:
    """Parse a raw pub/sub payload into a stream or remote disconnect message."""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    decoded = json.loads(raw)
    if decoded is None:
        decoded = {}
    if not isinstance(decoded, dict):
        raise ValueError(f"Unknown message: {text}")

    stream = decoded.get("stream")
    data = decoded.get("data")
    if isinstance(stream, str) and stream and isinstance(data, (str, type(None))):
        return StreamMessage(stream=stream, data=data or "")

    command = _typed_field(decoded, "command", str, "")
    if command == "disconnect":
        if "payload" not in decoded:
            raise ValueError("unexpected end of JSON input")
        payload = decoded["payload"]
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValueError("disconnect payload must be an object")
        return RemoteDisconnectMessage(
            identifier=_typed_field(payload, "identifier", str, ""),
            reconnect=_typed_field(payload, "reconnect", bool, False),
        )

    raise ValueError(f"Unknown message: {text}")


def confirmation_message(identifier: str) -> str:
    """Return a subscription confirmation for the identifier."""
    return _dump_json(Reply(identifier=identifier, type=CONFIRMED_TYPE).to_dict())


def rejection_message(identifier: str) -> str:
    """Return a subscription rejection for the identifier."""
    return _dump_json(Reply(identifier=identifier, type=REJECTED_TYPE).to_dict())