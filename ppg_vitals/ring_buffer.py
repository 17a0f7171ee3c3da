"""
Fixed-capacity FIFO buffer used for every rolling signal window.

Pushing onto a full buffer silently evicts the oldest element, so the
length can never exceed the capacity.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterator, TypeVar

import numpy as np

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Ordered, bounded sequence with overwrite-on-full semantics.

    Parameters
    ----------
    capacity:
        Maximum number of elements kept.  Must be positive.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"RingBuffer capacity must be >= 1, got {capacity}")
        self._items: Deque[T] = deque(maxlen=capacity)

    def push(self, item: T) -> None:
        self._items.append(item)

    def clear(self) -> None:
        self._items.clear()

    def to_array(self) -> np.ndarray:
        """Copy the contents into a float64 array (oldest first)."""
        return np.array(self._items, dtype=np.float64)

    def tail(self, n: int) -> list[T]:
        """Return the ``n`` most recent elements, oldest first."""
        if n <= 0:
            return []
        items = list(self._items)
        return items[-n:]

    @property
    def capacity(self) -> int:
        return self._items.maxlen  # type: ignore[return-value]

    @property
    def fill_ratio(self) -> float:
        """How full the buffer is (0 – 1)."""
        return len(self._items) / self.capacity

    @property
    def is_full(self) -> bool:
        return len(self._items) == self.capacity

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __bool__(self) -> bool:
        return bool(self._items)
