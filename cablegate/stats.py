"""Aggregation of request round-trip times."""

from __future__ import annotations

from datetime import timedelta

_HALF_MS = timedelta(microseconds=500)
_MS = timedelta(milliseconds=1)


def round_to_ms(duration: timedelta) -> int:
    """Round a duration to the nearest whole millisecond."""
    return (duration + _HALF_MS) // _MS


class ResultAggregate:
    """Collects round-trip samples and reports min, max and percentiles."""

    def __init__(self) -> None:
        self._samples: list[timedelta] = []
        self._sorted = True

    def add(self, rtt: timedelta) -> None:
        self._samples.append(rtt)
        self._sorted = False

    def count(self) -> int:
        return len(self._samples)

    def _sort(self) -> None:
        if not self._sorted:
            self._samples.sort()
            self._sorted = True

    def min(self) -> timedelta:
        if not self._samples:
            return timedelta(0)
        self._sort()
        return self._samples[0]

    def max(self) -> timedelta:
        if not self._samples:
            return timedelta(0)
        self._sort()
        return self._samples[-1]

    def percentile(self, p: int) -> timedelta:
        """Return the sample at rank p * count / 100; p must lie in 1..99."""
        if p <= 0:
            raise ValueError("p must be greater than 0")
        if p >= 100:
            raise ValueError("p must be less 100")

        if not self._samples:
            return timedelta(0)

        self._sort()
        return self._samples[p * len(self._samples) // 100]