# sequence.py
from __future__ import annotations

import threading


class Sequence:
    """A thread-safe counter. The first call to next() returns 1."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def next(self) -> int:
        """Increment and return the new value."""
        with self._lock:
            self._value += 1
            return self._value

    def curr(self) -> int:
        """Return the current value without changing it."""
        with self._lock:
            return self._value
