"""Registry of counters and gauges with periodic rotation and export."""

from __future__ import annotations

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Protocol, runtime_checkable

from .counter import Counter
from .gauge import Gauge
from .metrics_config import MetricsConfig
from .printer import BasePrinter

DEFAULT_ROTATE_INTERVAL = 15
PROMETHEUS_NAMESPACE = "anycable_go"

_log = logging.getLogger("cablegate.metrics")


class UnsupportedFormatterError(RuntimeError):
    """Raised when a custom metrics log formatter is requested."""


@runtime_checkable
class IntervalWriter(Protocol):
    """A writer that receives metrics once per rotation interval."""

    def run(self, interval: int) -> None: ...

    def stop(self) -> None: ...

    def write(self, metrics: Metrics) -> None: ...


@runtime_checkable
class Instrumenter(Protocol):
    """Something that records counter and gauge updates."""

    def counter_increment(self, name: str) -> None: ...

    def counter_add(self, name: str, val: int) -> None: ...

    def gauge_increment(self, name: str) -> None: ...

    def gauge_decrement(self, name: str) -> None: ...

    def gauge_set(self, name: str, val: int) -> None: ...

    def register_counter(self, name: str, desc: str) -> None: ...

    def register_gauge(self, name: str, desc: str) -> None: ...


def _to_prom_tags(tags: dict[str, str] | None) -> str:
    if tags is None:
        return ""
    pairs = ", ".join(f'{key}="{value}"' for key, value in tags.items())
    return "{" + pairs + "}"


class Metrics:
    """Holds the server's counters and gauges and feeds them to writers."""

    def __init__(
        self,
        writers: list[IntervalWriter] | None = None,
        rotate_interval: float = DEFAULT_ROTATE_INTERVAL,
    ) -> None:
        self._lock = threading.RLock()
        self._writers: list[IntervalWriter] = list(writers or [])
        self._rotate_interval = rotate_interval
        self._tags: dict[str, str] | None = None
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._stop_event = threading.Event()
        self._is_shut_down = False
        self._http_path = ""
        self._http_address: tuple[str, int] | None = None
        self._server: ThreadingHTTPServer | None = None
        self._server_thread: threading.Thread | None = None

    @classmethod
    def from_config(cls, config: MetricsConfig) -> Metrics:
        """Build a metrics registry from configuration."""
        writers: list[IntervalWriter] = []

        if config.log_enabled():
            if config.log_formatter_enabled():
                raise UnsupportedFormatterError(
                    "Custom metrics log formatters are not supported"
                )
            writers.append(BasePrinter(config.log_filter))

        instance = cls(writers, config.rotate_interval)

        if config.tags is not None:
            instance._tags = dict(config.tags)

        if config.http_enabled():
            instance._http_path = config.http
            instance._http_address = (config.host or "localhost", config.port)

        return instance

    def default_tags(self, tags: dict[str, str] | None) -> None:
        self._tags = tags

    def register_writer(self, writer: IntervalWriter) -> None:
        self._writers.append(writer)

    def _start_http_server(self) -> None:
        assert self._http_address is not None
        metrics = self
        path = self._http_path

        class _Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                if self.path.split("?", 1)[0] != path:
                    self.send_error(404)
                    return
                body = metrics.prometheus().encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/plain; charset=utf-8")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: object) -> None:
                _log.debug(format, *args)

        host, port = self._http_address
        try:
            self._server = ThreadingHTTPServer((host, port), _Handler)
        except OSError as exc:
            raise RuntimeError(
                f"Metrics HTTP server at {host}:{port} stopped: {exc}"
            ) from exc

        _log.info("Serve metrics at %s:%d%s", host, port, path)
        self._server_thread = threading.Thread(
            target=self._server.serve_forever, name="metrics-http", daemon=True
        )
        self._server_thread.start()

    def run(self) -> None:
        """Rotate counters periodically and pass metrics to writers until shutdown."""
        if self._http_address is not None and self._server is None:
            self._start_http_server()

        if not self._writers:
            _log.debug("No metrics writers. Disable metrics rotation")
            return

        if not self._rotate_interval:
            self._rotate_interval = DEFAULT_ROTATE_INTERVAL

        interval = self._rotate_interval
        for writer in self._writers:
            writer.run(int(interval))

        while not self._stop_event.wait(interval):
            _log.debug("Rotate metrics (interval %ss)", interval)
            self.rotate()
            for writer in self._writers:
                try:
                    writer.write(self)
                except Exception as exc:  # a failing writer must not stop rotation
                    _log.error("Metrics writer failed to write: %s", exc)

    def shutdown(self) -> None:
        """Stop rotation, the HTTP endpoint and every writer; safe to call twice."""
        with self._lock:
            if self._is_shut_down:
                return
            self._is_shut_down = True
            self._stop_event.set()

            if self._server is not None:
                self._server.shutdown()
                self._server.server_close()
                self._server = None

            for writer in self._writers:
                writer.stop()

    def register_counter(self, name: str, desc: str = "") -> None:
        with self._lock:
            self._counters[name] = Counter(name, desc)

    def register_gauge(self, name: str, desc: str = "") -> None:
        with self._lock:
            self._gauges[name] = Gauge(name, desc)

    def gauge_increment(self, name: str) -> None:
        self._gauges[name].inc()

    def gauge_decrement(self, name: str) -> None:
        self._gauges[name].dec()

    def gauge_set(self, name: str, val: int) -> None:
        self._gauges[name].set(val)

    def counter(self, name: str) -> Counter:
        return self._counters[name]

    def counter_increment(self, name: str) -> None:
        self._counters[name].inc()

    def counter_add(self, name: str, val: int) -> None:
        self._counters[name].add(val)

    def counters(self) -> list[Counter]:
        """Return every registered counter."""
        with self._lock:
            return list(self._counters.values())

    def gauge(self, name: str) -> Gauge:
        return self._gauges[name]

    def gauges(self) -> list[Gauge]:
        """Return every registered gauge."""
        with self._lock:
            return list(self._gauges.values())

    def interval_snapshot(self) -> dict[str, int]:
        """Return counters' interval values and gauges' current values."""
        with self._lock:
            snapshot = {name: c.interval_value() for name, c in self._counters.items()}
            snapshot.update({name: g.value() for name, g in self._gauges.items()})
            return snapshot

    def rotate(self) -> None:
        """Close the current interval for every counter."""
        with self._lock:
            for counter in self._counters.values():
                counter.update_delta()

    def prometheus(self) -> str:
        """Render all metrics in the Prometheus text format."""
        tags = _to_prom_tags(self._tags)
        parts: list[str] = []

        for kind, items in (("counter", self.counters()), ("gauge", self.gauges())):
            for item in items:
                name = f"{PROMETHEUS_NAMESPACE}_{item.name}"
                parts.append(f"\n# HELP {name} {item.desc}\n")
                parts.append(f"# TYPE {name} {kind}\n")
                parts.append(f"{name}{tags} {item.value()}\n")

        return "".join(parts)


class NoopMetrics:
    """An instrumenter that records nothing; it only counts discarded calls."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.discarded = 0

    def _discard(self) -> None:
        with self._lock:
            self.discarded += 1

    def counter_increment(self, name: str) -> None:
        self._discard()

    def counter_add(self, name: str, val: int) -> None:
        self._discard()

    def gauge_set(self, name: str, val: int) -> None:
        self._discard()

    def gauge_increment(self, name: str) -> None:
        self._discard()

    def gauge_decrement(self, name: str) -> None:
        self._discard()

    def register_counter(self, name: str, desc: str) -> None:
        self._discard()

    def register_gauge(self, name: str, desc: str) -> None:
        self._discard()