"""Configuration of metrics collection and export."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StatsdConfig:
    """Settings of the StatsD exporter."""

    host: str = ""
    prefix: str = "anycable_go."
    tag_format: str = "datadog"
    max_packet_size: int = 1400

    def enabled(self) -> bool:
        return self.host != ""


@dataclass
class MetricsConfig:
    """Settings of metrics logging, HTTP exposure and StatsD."""

    log: bool = False
    log_interval: int = 0
    rotate_interval: int = 15
    log_formatter: str = ""
    log_filter: list[str] | None = None
    http: str = ""
    host: str = ""
    port: int = 0
    tags: dict[str, str] | None = None
    statsd: StatsdConfig = field(default_factory=StatsdConfig)

    def log_enabled(self) -> bool:
        """True when any log option is set."""
        return self.log or self.log_formatter_enabled()

    def http_enabled(self) -> bool:
        return self.http != ""

    def log_formatter_enabled(self) -> bool:
        return self.log_formatter != ""