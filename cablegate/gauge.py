"""Gauges holding a current unsigned value."""

from __future__ import annotations

import threading

_UINT64 = 1 << 64


class Gauge:
    """A thread-safe unsigned 64-bit gauge."""

    def __init__(self, name: str, desc: str = "") -> None:
        self._name = name
        self._desc = desc
        self._value = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def desc(self) -> str:
        return self._desc

    def value(self) -> int:
        with self._lock:
            return self._value

    def set(self, value: int) -> None:
        """Set the value, wrapping into the unsigned 64-bit range."""
        with self._lock:
            self._value = value % _UINT64

    def inc(self) -> int:
        with self._lock:
            self._value = (self._value + 1) % _UINT64
            return self._value

    def dec(self) -> int:
        with self._lock:
            self._value = (self._value - 1) % _UINT64
            return self._value