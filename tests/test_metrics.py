import re
import threading

import pytest

from cablegate.metrics import Metrics, UnsupportedFormatterError
from cablegate.metrics_config import MetricsConfig


class RecordingWriter:
    def __init__(self):
        self.runs = []
        self.writes = []
        self.stops = 0
        self.written = threading.Event()

    def run(self, interval):
        self.runs.append(interval)

    def stop(self):
        self.stops += 1

    def write(self, metrics):
        self.writes.append(metrics.interval_snapshot())
        self.written.set()


def test_metrics_snapshot():
    m = Metrics(None, 10)
    m.register_counter("test_count", "")
    m.register_gauge("test_gauge", "")

    for _ in range(1000):
        m.counter("test_count").inc()

    m.gauge("test_gauge").set(123)
    m.rotate()

    assert m.interval_snapshot()["test_count"] == 1000
    assert m.interval_snapshot()["test_gauge"] == 123

    m.counter("test_count").inc()
    m.rotate()

    assert m.interval_snapshot()["test_count"] == 1
    assert m.interval_snapshot()["test_gauge"] == 123


def test_each_gauge():
    m = Metrics(None, 10)
    m.register_gauge("test_gauge", "First")
    m.register_gauge("test_gauge_2", "Second")
    m.gauge("test_gauge").set(123)
    m.gauge("test_gauge_2").set(321)

    values = {g.name: g.value() for g in m.gauges()}
    assert values == {"test_gauge": 123, "test_gauge_2": 321}


def test_each_counter():
    m = Metrics(None, 10)
    m.register_counter("test_counter", "First")
    m.register_counter("test_counter_2", "Second")
    m.counter("test_counter").inc()
    m.counter("test_counter_2").add(3)

    values = {c.name: c.value() for c in m.counters()}
    assert values == {"test_counter": 1, "test_counter_2": 3}


def test_instrumenter_methods():
    m = Metrics(None, 10)
    m.register_counter("c", "")
    m.register_gauge("g", "")

    m.counter_increment("c")
    m.counter_add("c", 4)
    m.gauge_set("g", 10)
    m.gauge_increment("g")
    m.gauge_decrement("g")
    m.gauge_decrement("g")

    assert m.counter("c").value() == 5
    assert m.gauge("g").value() == 9


def test_unknown_metric_raises():
    m = Metrics(None, 10)
    with pytest.raises(KeyError):
        m.counter_increment("missing")


def test_prometheus():
    m = Metrics(None, 10)
    m.register_counter("test_total", "Total number of smth")
    m.register_counter("any_total", "Total number of anything")
    m.register_gauge("tests", "Number of active smth")
    m.register_gauge("any_tests", "Number of active anything")

    m.gauge("tests").set(123)
    m.counter("test_total").add(3)

    actual = m.prometheus()

    assert (
        "\n# HELP anycable_go_test_total Total number of smth\n"
        "# TYPE anycable_go_test_total counter\n"
        "anycable_go_test_total 3\n"
    ) in actual
    assert (
        "\n# HELP anycable_go_any_total Total number of anything\n"
        "# TYPE anycable_go_any_total counter\n"
        "anycable_go_any_total 0\n"
    ) in actual
    assert (
        "\n# HELP anycable_go_tests Number of active smth\n"
        "# TYPE anycable_go_tests gauge\n"
        "anycable_go_tests 123\n"
    ) in actual
    assert (
        "\n# HELP anycable_go_any_tests Number of active anything\n"
        "# TYPE anycable_go_any_tests gauge\n"
        "anycable_go_any_tests 0\n"
    ) in actual


def test_prometheus_with_tags():
    m = Metrics(None, 10)
    m.default_tags({"env": "dev", "instance": "R2D2"})
    m.register_counter("test_total", "Total number of smth")
    m.register_gauge("tests", "Number of active smth")
    m.gauge("tests").set(123)
    m.counter("test_total").add(3)

    actual = m.prometheus()

    match = re.search(r"anycable_go_test_total{(.+)}\s+(\d+)", actual)
    assert match is not None

    tags = match.group(1).split(", ")
    assert 'env="dev"' in tags
    assert 'instance="R2D2"' in tags
    assert match.group(2) == "3"


def test_prometheus_handler_output():
    m = Metrics(None, 10)
    m.register_counter("test_total", "Total number of smth")
    m.register_counter("any_total", "Total number of anything")
    m.counter("test_total").add(3)

    body = m.prometheus()

    assert "anycable_go_test_total 3" in body
    assert "anycable_go_any_total 0" in body


def test_from_config_with_tags():
    config = MetricsConfig(tags={"env": "dev"})
    m = Metrics.from_config(config)
    m.register_counter("test_total", "Total")

    assert 'anycable_go_test_total{env="dev"} 0' in m.prometheus()


def test_from_config_custom_formatter_is_unsupported():
    config = MetricsConfig(log_formatter="formatter.rb")
    with pytest.raises(UnsupportedFormatterError):
        Metrics.from_config(config)


def test_run_rotates_and_writes_until_shutdown():
    writer = RecordingWriter()
    m = Metrics([writer], 0.05)
    m.register_counter("c", "")
    m.counter("c").add(4)

    thread = threading.Thread(target=m.run)
    thread.start()

    assert writer.written.wait(2)
    m.shutdown()
    thread.join(2)

    assert not thread.is_alive()
    assert writer.runs == [0]
    assert writer.writes[0]["c"] == 4
    assert writer.stops == 1


def test_shutdown_is_idempotent():
    writer = RecordingWriter()
    m = Metrics([writer], 10)

    m.shutdown()
    m.shutdown()

    assert writer.stops == 1


def test_register_writer_is_stopped_on_shutdown():
    writer = RecordingWriter()
    m = Metrics(None, 10)
    m.register_writer(writer)

    m.shutdown()

    assert writer.stops == 1