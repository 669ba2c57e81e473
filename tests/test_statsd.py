import socket

import pytest

from cablegate.metrics import Metrics
from cablegate.metrics_config import StatsdConfig
from cablegate.statsd import StatsdWriter, TagFormat, resolve_tags_style


@pytest.fixture
def metrics():
    m = Metrics(None, 0)
    m.register_counter("test_count", "")
    m.register_gauge("test_gauge", "")
    for _ in range(10):
        m.counter("test_count").inc()
    m.gauge("test_gauge").set(123)
    return m


@pytest.fixture
def server():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(1)
    yield sock
    sock.close()


def _address(sock):
    host, port = sock.getsockname()
    return f"{host}:{port}"


def _send(metrics, server, config, tags=None):
    writer = StatsdWriter(config, tags)
    writer.run(0)
    try:
        writer.write(metrics)
        return server.recv(1500).decode("utf-8")
    finally:
        writer.stop()


def test_write_sends_udp_with_metrics(metrics, server):
    config = StatsdConfig(host=_address(server))
    payload = _send(metrics, server, config)

    assert "anycable_go.test_count:10|c" in payload
    assert "anycable_go.test_gauge:123|g" in payload


def test_write_uses_custom_prefix(metrics, server):
    config = StatsdConfig(host=_address(server), prefix="ws.")
    payload = _send(metrics, server, config)

    assert "ws.test_count:10|c" in payload
    assert "ws.test_gauge:123|g" in payload


def test_datadog_tags(metrics, server):
    config = StatsdConfig(host=_address(server), tag_format="datadog")
    payload = _send(metrics, server, config, {"env": "dev"})

    assert "anycable_go.test_count:10|c|#env:dev" in payload
    assert "anycable_go.test_gauge:123|g|#env:dev" in payload


def test_multiple_datadog_tags(metrics, server):
    config = StatsdConfig(host=_address(server), tag_format="datadog")
    payload = _send(metrics, server, config, {"env": "dev", "rev": "1.1"})

    assert "anycable_go.test_count:10|c|#" in payload
    assert "anycable_go.test_gauge:123|g|#" in payload
    assert "env:dev" in payload
    assert "rev:1.1" in payload


def test_influxdb_tags(metrics, server):
    config = StatsdConfig(host=_address(server), tag_format="influxdb")
    payload = _send(metrics, server, config, {"env": "dev"})

    assert "anycable_go.test_count,env=dev:10|c" in payload
    assert "anycable_go.test_gauge,env=dev:123|g" in payload


def test_graphite_tags(metrics, server):
    config = StatsdConfig(host=_address(server), tag_format="graphite")
    payload = _send(metrics, server, config, {"env": "dev"})

    assert "anycable_go.test_count;env=dev:10|c" in payload
    assert "anycable_go.test_gauge;env=dev:123|g" in payload


def test_write_before_run_sends_nothing(metrics, server):
    server.settimeout(0.2)
    writer = StatsdWriter(StatsdConfig(host=_address(server)))
    writer.write(metrics)

    with pytest.raises(socket.timeout):
        server.recv(1500)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("datadog", TagFormat.DATADOG),
        ("influxdb", TagFormat.INFLUXDB),
        ("graphite", TagFormat.GRAPHITE),
    ],
)
def test_resolve_tags_style(name, expected):
    assert resolve_tags_style(name) is expected


def test_resolve_unknown_tags_style():
    with pytest.raises(ValueError, match="Unknown StatsD tags format: prom"):
        resolve_tags_style("prom")


def test_run_with_unknown_tag_format_raises(server):
    config = StatsdConfig(host=_address(server), tag_format="prom")
    writer = StatsdWriter(config, {"env": "dev"})
    with pytest.raises(ValueError):
        writer.run(0)


def test_run_with_address_without_port_raises():
    writer = StatsdWriter(StatsdConfig(host="localhost"))
    with pytest.raises(ValueError):
        writer.run(0)