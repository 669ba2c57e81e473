"""Logging of metrics snapshots."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .metrics import Metrics

_log = logging.getLogger("cablegate.metrics")


class BasePrinter:
    """Logs metrics snapshots as structured records, optionally filtered."""

    def __init__(self, filter_list: Iterable[str] | None = None) -> None:
        self._filter: dict[str, None] | None = (
            None if filter_list is None else dict.fromkeys(filter_list)
        )
        self.interval: int | None = None

    def run(self, interval: int) -> None:
        """Remember the interval and announce how metrics are going to be logged."""
        self.interval = interval
        if self._filter is not None:
            _log.info(
                "Log metrics every %ds (only selected fields: %s)",
                interval,
                ", ".join(self._filter),
            )
        else:
            _log.info("Log metrics every %ds", interval)

    def stop(self) -> None:
        """Forget the interval set by run."""
        self.interval = None

    def write(self, metrics: Metrics) -> None:
        self.print(metrics.interval_snapshot())

    def print(self, snapshot: dict[str, int]) -> None:
        """Log the snapshot at info level; fields are attached to the record."""
        fields: dict[str, object] = {"context": "metrics"}
        for key, value in snapshot.items():
            if self._filter is None or key in self._filter:
                fields[key] = value

        text = " ".join(f"{key}={value}" for key, value in fields.items())
        _log.info(text, extra={"fields": fields})