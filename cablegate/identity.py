"""Controllers that identify connections before the application sees them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import parse_qs, urlsplit

import jwt

from .common import CommandResult, ConnectResult, SessionEnv, Status

ACTION_CABLE_WELCOME_MESSAGE = '{"type":"welcome"}'
ACTION_CABLE_DISCONNECT_UNAUTHORIZED_MESSAGE = (
    '{"type":"disconnect","reason":"unauthorized","reconnect":false}'
)
EXPIRED_MESSAGE = '{"type":"disconnect","reason":"token_expired","reconnect":false}'

DEFAULT_JWT_ALGO = "HS256"
_HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]

_log = logging.getLogger("cablegate.jwt")


class Controller(Protocol):
    """Application-side handler of connection and channel events."""

    def start(self) -> None: ...

    def shutdown(self) -> None: ...

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult: ...

    def subscribe(
        self, sid: str, env: SessionEnv, identifier: str, channel: str
    ) -> CommandResult: ...

    def unsubscribe(
        self, sid: str, env: SessionEnv, identifier: str, channel: str
    ) -> CommandResult: ...

    def perform(
        self, sid: str, env: SessionEnv, identifier: str, channel: str, data: str
    ) -> CommandResult: ...

    def disconnect(
        self, sid: str, env: SessionEnv, identifier: str, subscriptions: list[str]
    ) -> None: ...


class Identifier(Protocol):
    """Identifies a connection; returns None to defer to the controller."""

    def identify(self, sid: str, env: SessionEnv) -> ConnectResult | None: ...


class IdentifiableController:
    """Wraps a controller, letting an identifier authenticate first."""

    def __init__(self, controller: Controller, identifier: Identifier) -> None:
        self.controller = controller
        self.identifier = identifier

    def start(self) -> None:
        self.controller.start()

    def shutdown(self) -> None:
        self.controller.shutdown()

    def authenticate(self, sid: str, env: SessionEnv) -> ConnectResult:
        result = self.identifier.identify(sid, env)
        if result is None:
            return self.controller.authenticate(sid, env)
        return result

    def subscribe(
        self, sid: str, env: SessionEnv, identifier: str, channel: str
    ) -> CommandResult:
        return self.controller.subscribe(sid, env, identifier, channel)

    def unsubscribe(
        self, sid: str, env: SessionEnv, identifier: str, channel: str
    ) -> CommandResult:
        return self.controller.unsubscribe(sid, env, identifier, channel)

    def perform(
        self, sid: str, env: SessionEnv, identifier: str, channel: str, data: str
    ) -> CommandResult:
        return self.controller.perform(sid, env, identifier, channel, data)

    def disconnect(
        self, sid: str, env: SessionEnv, identifier: str, subscriptions: list[str]
    ) -> None:
        self.controller.disconnect(sid, env, identifier, subscriptions)


@dataclass
class JWTConfig:
    """Settings of JWT-based identification."""

    secret: str = ""
    param: str = "jid"
    algo: str = DEFAULT_JWT_ALGO
    force: bool = False

    def enabled(self) -> bool:
        return self.secret != ""


def _unauthorized_response() -> ConnectResult:
    return ConnectResult(
        status=Status.FAILURE,
        transmissions=[ACTION_CABLE_DISCONNECT_UNAUTHORIZED_MESSAGE],
    )


def _expired_response() -> ConnectResult:
    return ConnectResult(status=Status.FAILURE, transmissions=[EXPIRED_MESSAGE])


class JWTIdentifier:
    """Identifies connections by an HMAC-signed token in a header or query."""

    def __init__(self, config: JWTConfig) -> None:
        self._secret = config.secret.encode()
        self.param_name = config.param
        self.header_name = f"x-{config.param}".lower()
        self.required = config.force

    def _raw_token(self, env: SessionEnv) -> str:
        if env.headers is not None:
            found = env.headers.get(self.header_name, "")
            if found:
                return found

        query = urlsplit(env.url).query
        values = parse_qs(query, keep_blank_values=True).get(self.param_name)
        return values[0] if values else ""

    def identify(self, sid: str, env: SessionEnv) -> ConnectResult | None:
        """Verify the token; None means no token and identification is optional."""
        raw = self._raw_token(env)

        if not raw:
            _log.debug("No token is found (url=%s, headers=%s)", env.url, env.headers)
            if self.required:
                return _unauthorized_response()
            return None

        try:
            claims = jwt.decode(raw, self._secret, algorithms=_HMAC_ALGORITHMS)
        except jwt.ExpiredSignatureError:
            _log.debug("Token has expired")
            return _expired_response()
        except jwt.InvalidTokenError as exc:
            _log.debug("Invalid token: %s", exc)
            return _unauthorized_response()

        identifiers = claims.get("ext")
        if not isinstance(identifiers, str):
            raise ValueError(f"JWT token doesn't contain identifiers: {claims}")

        return ConnectResult(
            identifier=identifiers,
            transmissions=[ACTION_CABLE_WELCOME_MESSAGE],
            status=Status.SUCCESS,
        )