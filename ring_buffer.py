"""Fixed-capacity float ring used by the per-tick histories."""
from __future__ import annotations

import numpy as np


class RingBuffer:
    """
    Position-indexed circular buffer over a preallocated float64 array.

    ``append`` never allocates; once full, the oldest value is overwritten.
    Reads return chronological copies so callers never alias the storage.
    """
    __slots__ = ('_data', '_head', '_count')

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("RingBuffer capacity must be >= 1")
        self._data = np.zeros(int(capacity), dtype=np.float64)
        self._head = 0      # Next write position
        self._count = 0

    @property
    def capacity(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return self._count

    def append(self, value: float) -> None:
        self._data[self._head] = value
        self._head = (self._head + 1) % len(self._data)
        if self._count < len(self._data):
            self._count += 1

    @property
    def latest(self) -> float:
        if self._count == 0:
            raise IndexError("RingBuffer is empty")
        return float(self._data[self._head - 1])

    def last(self, n: int) -> np.ndarray:
        """Return the most recent ``n`` values (fewer if not yet filled), oldest first."""
        n = max(0, min(int(n), self._count))
        if n == 0:
            return np.empty(0, dtype=np.float64)
        idx = (self._head - n + np.arange(n)) % len(self._data)
        return self._data[idx]

    def values(self) -> np.ndarray:
        return self.last(self._count)

    def clear(self) -> None:
        self._head = 0
        self._count = 0

    def resize(self, capacity: int) -> None:
        """Change capacity, keeping the most recent values that still fit."""
        if capacity < 1:
            raise ValueError("RingBuffer capacity must be >= 1")
        if capacity == len(self._data):
            return
        kept = self.last(capacity)
        self._data = np.zeros(int(capacity), dtype=np.float64)
        self._data[:len(kept)] = kept
        self._count = len(kept)
        self._head = self._count % int(capacity)
