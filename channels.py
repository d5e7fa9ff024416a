"""Publication primitives between the tick producer and its consumers.

``LatestValue`` is a single atomically swapped cell for pull-style readers.
``Broadcast`` fans a value out to bounded per-subscriber queues; a slow
subscriber loses its oldest items instead of growing without bound.
"""
from __future__ import annotations

import queue
import threading
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class LatestValue(Generic[T]):
    """Holds the most recently published immutable value."""

    def __init__(self, initial: Optional[T] = None):
        self._lock = threading.Lock()
        self._value = initial

    def publish(self, value: T) -> None:
        with self._lock:
            self._value = value

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value


class Broadcast(Generic[T]):
    """Drop-oldest fan-out over bounded ``queue.Queue`` subscribers."""

    def __init__(self, default_maxsize: int = 16, max_subscribers: int = 64):
        self.default_maxsize = max(1, int(default_maxsize))
        self.max_subscribers = max(1, int(max_subscribers))
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, maxsize: Optional[int] = None) -> "queue.Queue[T]":
        size = self.default_maxsize if maxsize is None else max(1, int(maxsize))
        q: queue.Queue = queue.Queue(maxsize=size)
        with self._lock:
            if len(self._subscribers) >= self.max_subscribers:
                raise RuntimeError(f"Subscriber limit reached ({self.max_subscribers})")
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: "queue.Queue[T]") -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def publish(self, value: T) -> None:
        with self._lock:
            targets = list(self._subscribers)
        for q in targets:
            while True:
                try:
                    q.put_nowait(value)
                    break
                except queue.Full:
                    # Evict the oldest entry and retry
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
