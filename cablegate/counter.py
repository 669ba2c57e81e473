"""Monotonic counters with per-interval deltas."""

from __future__ import annotations

import threading

_UINT64 = 1 << 64


class Counter:
    """A thread-safe unsigned 64-bit counter tracking interval deltas."""

    def __init__(self, name: str, desc: str = "") -> None:
        self._name = name
        self._desc = desc
        self._value = 0
        self._last_interval_value = 0
        self._last_interval_delta = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def desc(self) -> str:
        return self._desc

    def value(self) -> int:
        """Return the raw counter value."""
        with self._lock:
            return self._value

    def interval_value(self) -> int:
        """Return the last interval's delta, or the total before any rotation."""
        with self._lock:
            if self._last_interval_value == 0:
                return self._value
            return self._last_interval_delta

    def inc(self) -> int:
        return self.add(1)

    def add(self, n: int) -> int:
        """Add n and return the new value."""
        with self._lock:
            self._value = (self._value + n) % _UINT64
            return self._value

    def update_delta(self) -> None:
        """Record the change since the previous update as the interval delta."""
        with self._lock:
            now = self._value
            self._last_interval_delta = (now - self._last_interval_value) % _UINT64
            self._last_interval_value = now