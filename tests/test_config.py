import pytest

from cablegate.config import Config, detect_presets_from_env

_PLATFORM_VARS = (
    "FLY_APP_NAME",
    "FLY_REGION",
    "FLY_ALLOC_ID",
    "ANYCABLE_FLY_RPC_APP_NAME",
    "HEROKU_DYNO_ID",
    "HEROKU_APP_ID",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _PLATFORM_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_no_presets(clean_env):
    config = Config()
    config.load_presets()
    assert config.host == "localhost"
    assert detect_presets_from_env() == []


def test_fly_presets(clean_env):
    clean_env.setenv("FLY_APP_NAME", "any-test")
    clean_env.setenv("FLY_REGION", "mag")
    clean_env.setenv("FLY_ALLOC_ID", "1234")
    clean_env.setenv("ANYCABLE_FLY_RPC_APP_NAME", "anycable-web")

    config = Config()
    assert config.presets() == ["fly"]

    config.load_presets()

    assert config.host == "0.0.0.0"
    assert config.embedded_nats.service_addr == "nats://0.0.0.0:4222"
    assert config.embedded_nats.cluster_addr == "nats://0.0.0.0:5222"
    assert config.embedded_nats.cluster_name == "any-test-mag-cluster"
    assert config.embedded_nats.routes == ["nats://mag.any-test.internal:5222"]
    assert config.rpc_host == "dns:///mag.anycable-web.internal:50051"


def test_heroku_presets(clean_env):
    clean_env.setenv("HEROKU_DYNO_ID", "web.42")
    clean_env.setenv("HEROKU_APP_ID", "herr-cable")

    config = Config()
    assert config.presets() == ["heroku"]

    config.load_presets()
    assert config.host == "0.0.0.0"


def test_override_some_preset_settings(clean_env):
    clean_env.setenv("FLY_APP_NAME", "any-test")
    clean_env.setenv("FLY_REGION", "mag")
    clean_env.setenv("FLY_ALLOC_ID", "1234")

    config = Config()
    assert config.presets() == ["fly"]

    config.embedded_nats.service_addr = "nats://0.0.0.0:1234"
    config.load_presets()

    assert config.host == "0.0.0.0"
    assert config.embedded_nats.service_addr == "nats://0.0.0.0:1234"


def test_fly_without_rpc_app_keeps_rpc_host(clean_env):
    clean_env.setenv("FLY_APP_NAME", "any-test")
    clean_env.setenv("FLY_REGION", "mag")
    clean_env.setenv("FLY_ALLOC_ID", "1234")

    config = Config()
    config.load_presets()
    assert config.rpc_host == Config().rpc_host


def test_explicit_over_implicit_presets(clean_env):
    clean_env.setenv("FLY_APP_NAME", "any-test")
    clean_env.setenv("FLY_REGION", "mag")
    clean_env.setenv("FLY_ALLOC_ID", "1234")

    config = Config()
    config.user_presets = []
    assert config.presets() == []


def test_explicit_fly_preset_without_env_fails(clean_env):
    config = Config(user_presets=["fly"])
    with pytest.raises(RuntimeError, match="FLY_REGION env is missing"):
        config.load_presets()


def test_fly_preset_requires_app_name(clean_env):
    clean_env.setenv("FLY_REGION", "mag")
    config = Config(user_presets=["fly"])
    with pytest.raises(RuntimeError, match="FLY_APP_NAME env is missing"):
        config.load_presets()


def test_unknown_preset_is_ignored(clean_env):
    config = Config(user_presets=["none"])
    config.load_presets()
    assert config.host == "localhost"


def test_defaults():
    config = Config()
    assert config.path == ["/cable"]
    assert config.health_path == "/health"
    assert config.broadcast_adapter == "redis"
    assert config.headers == ["cookie"]
    assert config.embedded_nats.cluster_name == "anycable-cluster"