import time
from unittest.mock import Mock

import jwt
import pytest

from cablegate.common import CommandResult, ConnectResult, SessionEnv, Status
from cablegate.identity import IdentifiableController, JWTConfig, JWTIdentifier

SECRET = "secret"

UNAUTHORIZED = '{"type":"disconnect","reason":"unauthorized","reconnect":false}'
EXPIRED = '{"type":"disconnect","reason":"token_expired","reconnect":false}'
WELCOME = '{"type":"welcome"}'


@pytest.fixture
def env():
    return SessionEnv(url="ws://demo.anycable.io/cable", headers={"cookie": "val=1;"})


@pytest.fixture
def command_result():
    return CommandResult(transmissions=["message_sent"], streams=["chat_42"])


def make_subject():
    controller = Mock()
    identifier = Mock()
    return controller, identifier, IdentifiableController(controller, identifier)


def test_start_delegates():
    controller, _, subject = make_subject()
    controller.start.return_value = None
    assert subject.start() is None
    controller.start.assert_called_once_with()


def test_shutdown_delegates():
    controller, _, subject = make_subject()
    controller.shutdown.return_value = None
    assert subject.shutdown() is None
    controller.shutdown.assert_called_once_with()


def test_authenticate_success(env):
    controller, identifier, subject = make_subject()
    expected = ConnectResult(identifier="test_ids", transmissions=[WELCOME], status=Status.SUCCESS)
    identifier.identify.return_value = expected

    assert subject.authenticate("2021", env) is expected
    identifier.identify.assert_called_once_with("2021", env)
    controller.authenticate.assert_not_called()


def test_authenticate_failure(env):
    controller, identifier, subject = make_subject()
    expected = ConnectResult(status=Status.FAILURE)
    identifier.identify.return_value = expected

    assert subject.authenticate("2020", env) is expected
    controller.authenticate.assert_not_called()


def test_authenticate_error(env):
    controller, identifier, subject = make_subject()
    identifier.identify.side_effect = RuntimeError("identifier failed")

    with pytest.raises(RuntimeError, match="identifier failed"):
        subject.authenticate("1998", env)
    controller.authenticate.assert_not_called()


def test_authenticate_passthrough(env):
    controller, identifier, subject = make_subject()
    expected = ConnectResult(identifier="test_ids", transmissions=[WELCOME], status=Status.SUCCESS)
    identifier.identify.return_value = None
    controller.authenticate.return_value = expected

    assert subject.authenticate("2022", env) is expected
    controller.authenticate.assert_called_once_with("2022", env)


def test_subscribe(env, command_result):
    controller, _, subject = make_subject()
    controller.subscribe.return_value = command_result

    assert subject.subscribe("42", env, "name=jack", "chat") is command_result
    controller.subscribe.assert_called_once_with("42", env, "name=jack", "chat")


def test_unsubscribe(env, command_result):
    controller, _, subject = make_subject()
    controller.unsubscribe.return_value = command_result

    assert subject.unsubscribe("42", env, "name=jack", "chat") is command_result
    controller.unsubscribe.assert_called_once_with("42", env, "name=jack", "chat")


def test_perform(env, command_result):
    controller, _, subject = make_subject()
    controller.perform.return_value = command_result

    assert subject.perform("42", env, "name=jack", "chat", "ping") is command_result
    controller.perform.assert_called_once_with("42", env, "name=jack", "chat", "ping")


def test_disconnect_propagates_error(env):
    controller, _, subject = make_subject()
    controller.disconnect.side_effect = RuntimeError("foo")

    with pytest.raises(RuntimeError, match="foo"):
        subject.disconnect("42", env, "name=jack", ["chat"])
    controller.disconnect.assert_called_once_with("42", env, "name=jack", ["chat"])


def test_jwt_config_defaults():
    config = JWTConfig()
    assert config.param == "jid"
    assert config.algo == "HS256"
    assert config.enabled() is False
    assert JWTConfig(secret=SECRET).enabled() is True


def sign_claims(claims, signing_key=SECRET, algorithm="HS256"):
    return jwt.encode(claims, signing_key, algorithm=algorithm)


def identifier_for(force=False):
    return JWTIdentifier(JWTConfig(secret=SECRET, force=force))


def test_jwt_token_from_header():
    signed = sign_claims({"ext": '{"user":"jack"}'})
    env = SessionEnv(url="/cable", headers={"x-jid": signed})

    result = identifier_for().identify("1", env)

    assert result.identifier == '{"user":"jack"}'
    assert result.transmissions == [WELCOME]
    assert result.status == Status.SUCCESS


def test_jwt_token_from_query():
    signed = sign_claims({"ext": "ids"})
    env = SessionEnv(url=f"ws://localhost/cable?jid={signed}")

    result = identifier_for().identify("1", env)

    assert result.identifier == "ids"


def test_jwt_missing_token_optional():
    env = SessionEnv(url="/cable", headers={})
    assert identifier_for().identify("1", env) is None


def test_jwt_missing_token_enforced():
    env = SessionEnv(url="/cable", headers={})
    result = identifier_for(force=True).identify("1", env)
    assert result.status == Status.FAILURE
    assert result.transmissions == [UNAUTHORIZED]


def test_jwt_expired_token():
    signed = sign_claims({"ext": "ids", "exp": int(time.time()) - 60})
    env = SessionEnv(url=f"/cable?jid={signed}")

    result = identifier_for().identify("1", env)

    assert result.status == Status.FAILURE
    assert result.transmissions == [EXPIRED]


def test_jwt_wrong_signature():
    other_key = "placeholder"
    signed = sign_claims({"ext": "ids"}, signing_key=other_key)
    env = SessionEnv(url=f"/cable?jid={signed}")

    result = identifier_for().identify("1", env)

    assert result.transmissions == [UNAUTHORIZED]


def test_jwt_non_hmac_algorithm_rejected():
    unsigned = jwt.encode({"ext": "ids"}, None, algorithm="none")
    env = SessionEnv(url=f"/cable?jid={unsigned}")

    result = identifier_for().identify("1", env)

    assert result.status == Status.FAILURE
    assert result.transmissions == [UNAUTHORIZED]


def test_jwt_without_identifiers_raises():
    signed = sign_claims({"sub": "jack"})
    env = SessionEnv(url=f"/cable?jid={signed}")

    with pytest.raises(ValueError, match="doesn't contain identifiers"):
        identifier_for().identify("1", env)


def test_identifiable_controller_with_jwt(env):
    controller = Mock()
    signed = sign_claims({"ext": "ids"})
    env.set_header("x-jid", signed)

    subject = IdentifiableController(controller, identifier_for())
    result = subject.authenticate("1", env)

    assert result.identifier == "ids"
    controller.authenticate.assert_not_called()