"""Export of metrics to a StatsD server over UDP."""

from __future__ import annotations

import logging
import socket
import threading
from enum import Enum
from typing import TYPE_CHECKING

from .metrics_config import StatsdConfig

if TYPE_CHECKING:
    from .metrics import Metrics

_log = logging.getLogger("cablegate.statsd")


class TagFormat(Enum):
    """Dialect used to attach tags to StatsD metrics."""

    DATADOG = "datadog"
    INFLUXDB = "influxdb"
    GRAPHITE = "graphite"


def resolve_tags_style(name: str) -> TagFormat:
    """Return the tag format with the given name."""
    try:
        return TagFormat(name)
    except ValueError:
        raise ValueError(f"Unknown StatsD tags format: {name}") from None


def _split_host(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep or not port:
        raise ValueError(f"StatsD address must be in the form host:port: {address}")
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"Invalid StatsD port: {port}") from None
    return host.strip("[]") or "localhost", port_num


class StatsdWriter:
    """Sends counters' interval values and gauges' values to StatsD."""

    def __init__(self, config: StatsdConfig, tags: dict[str, str] | None = None) -> None:
        self.config = config
        self.tags = tags
        self._sock: socket.socket | None = None
        self._tag_format: TagFormat | None = None
        self._lock = threading.Lock()

    def run(self, interval: int) -> None:
        """Open the UDP socket to the StatsD server."""
        tags_info = ""
        if self.tags is not None:
            self._tag_format = resolve_tags_style(self.config.tag_format)
            tags_info = f", tags={self.tags}, style={self.config.tag_format}"

        host, port = _split_host(self.config.host)
        family, kind, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM
        )[0]
        sock = socket.socket(family, kind, proto)
        sock.connect(sockaddr)

        with self._lock:
            self._sock = sock

        _log.info(
            "Send statsd metrics to %s with every %ss (prefix=%s%s)",
            self.config.host,
            interval,
            self.config.prefix,
            tags_info,
        )

    def stop(self) -> None:
        with self._lock:
            if self._sock is not None:
                self._sock.close()
                self._sock = None

    def _format_line(self, name: str, value: int, kind: str) -> str:
        full_name = self.config.prefix + name
        if not self.tags or self._tag_format is None:
            return f"{full_name}:{value}|{kind}"

        if self._tag_format is TagFormat.DATADOG:
            tags = ",".join(f"{k}:{v}" for k, v in self.tags.items())
            return f"{full_name}:{value}|{kind}|#{tags}"

        if self._tag_format is TagFormat.INFLUXDB:
            tags = ",".join(f"{k}={v}" for k, v in self.tags.items())
            return f"{full_name},{tags}:{value}|{kind}"

        tags = ";".join(f"{k}={v}" for k, v in self.tags.items())
        return f"{full_name};{tags}:{value}|{kind}"

    def _packets(self, lines: list[str]) -> list[bytes]:
        packets: list[bytes] = []
        current = b""
        for line in lines:
            data = line.encode("utf-8")
            if current and len(current) + 1 + len(data) > self.config.max_packet_size:
                packets.append(current)
                current = b""
            current = data if not current else current + b"\n" + data
        if current:
            packets.append(current)
        return packets

    def write(self, metrics: Metrics) -> None:
        """Send the current metrics; does nothing before run or after stop."""
        with self._lock:
            if self._sock is None:
                return

            lines = [
                self._format_line(c.name, c.interval_value(), "c")
                for c in metrics.counters()
            ]
            lines.extend(
                self._format_line(g.name, g.value(), "g") for g in metrics.gauges()
            )

            for packet in self._packets(lines):
                try:
                    self._sock.send(packet)
                except OSError as exc:
                    _log.error("Error sending statsd packet: %s", exc)