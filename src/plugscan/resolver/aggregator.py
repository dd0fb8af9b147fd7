"""Thread-safe accumulation of discovered types."""

from __future__ import annotations

import threading
from typing import Generic, Iterable, TypeVar

__all__ = ["ResultAggregator"]

T = TypeVar("T")


class ResultAggregator(Generic[T]):
    """Collect verified results, collapsing duplicates by identity.

    Several scans, one per resource location, may feed the same instance from
    worker threads.

    Example:
        >>> aggregator = ResultAggregator()
        >>> aggregator.add(int), aggregator.add(int)
        (True, False)
        >>> aggregator.snapshot()
        frozenset({<class 'int'>})
    """

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._lock = threading.Lock()
        self._items: set[T] = set(items)

    def add(self, item: T) -> bool:
        """Merge ``item``; return ``True`` when it was not already present."""

        with self._lock:
            if item in self._items:
                return False
            self._items.add(item)
            return True

    def update(self, items: Iterable[T]) -> int:
        """Merge ``items`` and return how many were new."""

        return sum(1 for item in items if self.add(item))

    def snapshot(self) -> frozenset[T]:
        with self._lock:
            return frozenset(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, item: object) -> bool:
        with self._lock:
            return item in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
