"""A controller that answers like a benchmark channel without calling RPC."""

from __future__ import annotations

import json
import secrets
from typing import Any

from .common import CommandResult, ConnectResult, SessionEnv, StreamMessage, _canonical, _dump_json
from .metrics import Instrumenter

METRICS_CALLS = "gochannels_call_total"

IDENTIFIER = '{"channel":"BenchmarkChannel"}'
WELCOME_MESSAGE = '{"type":"welcome"}'
CONFIRMATION_MESSAGE = (
    '{"type":"confirm_subscription","identifier":"{\\"channel\\":\\"BenchmarkChannel\\"}"}'
)

_NANOID_ALPHABET = "_-0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_NANOID_SIZE = 21


def _nanoid() -> str:
    return "".join(secrets.choice(_NANOID_ALPHABET) for _ in range(_NANOID_SIZE))


def _to_json(value: Any) -> str:
    return _dump_json(_canonical(value))


class BenchController:
    """Accepts every connection and echoes or broadcasts benchmark actions."""

    def __init__(self, metrics: Instrumenter) -> None:
        self._metrics = metrics
        self.running = False
        metrics.register_counter(METRICS_CALLS, "The total number of Go channels calls")

    def _count(self) -> None:
        self._metrics.counter_increment(METRICS_CALLS)

    def start(self) -> None:
        """Mark the controller as running; it needs no connections."""
        self.running = True

    def shutdown(self) -> None:
        """Mark the controller as stopped."""
        self.running = False

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult:
        """Accept the connection with a random identifier."""
        self._count()
        identifiers = _to_json({"id": _nanoid()})
        return ConnectResult(identifier=identifiers, transmissions=[WELCOME_MESSAGE])

    def subscribe(
        self, sid: str, env: SessionEnv, identifier: str, channel: str
    ) -> CommandResult:
        self._count()
        return CommandResult(streams=["all"], transmissions=[CONFIRMATION_MESSAGE])

    def unsubscribe(
        self, sid: str, env: SessionEnv, identifier: str, channel: str
    ) -> CommandResult:
        self._count()
        return CommandResult(stop_all_streams=True)

    def perform(
        self, sid: str, env: SessionEnv, identifier: str, channel: str, data: str
    ) -> CommandResult:
        """Handle the "echo" and "broadcast" actions; others do nothing."""
        self._count()

        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise ValueError("action payload must be a JSON object")

        action = payload.get("action")
        if not isinstance(action, str):
            raise TypeError("action must be a string")

        if action == "echo":
            response = _to_json({"message": payload, "identifier": IDENTIFIER})
            return CommandResult(transmissions=[response])

        if action == "broadcast":
            broadcast = StreamMessage(stream="all", data=_to_json(payload))
            payload["action"] = "broadcastResult"
            response = _to_json({"message": payload, "identifier": IDENTIFIER})
            return CommandResult(transmissions=[response], broadcasts=[broadcast])

        return CommandResult()

    def disconnect(
        self, sid: str, env: SessionEnv, identifier: str, subscriptions: list[str]
    ) -> None:
        self._count()