"""
Rolling frame history and frame-skip cache used by every temporal analyzer
"""
from collections import deque
from typing import Any, Deque, Generic, Iterator, List, Optional, TypeVar

import numpy as np

T = TypeVar('T')


def freeze(array: np.ndarray) -> np.ndarray:
    """Return a read-only copy of an array so stored feature vectors cannot change."""
    frozen = np.array(array, dtype=np.float64, copy=True)
    frozen.setflags(write=False)
    return frozen


class RollingFrameHistory(Generic[T]):
    """
    Fixed-capacity FIFO of per-frame feature vectors.

    Appending to a full history evicts the oldest entry, so ``len(history)``
    never exceeds ``capacity``. Entries are kept in arrival order.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: Deque[T] = deque(maxlen=capacity)

    def append(self, entry: T) -> None:
        self._entries.append(entry)

    def recent(self, count: int) -> List[T]:
        """Return up to ``count`` most recent entries, oldest first."""
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    @property
    def latest(self) -> Optional[T]:
        return self._entries[-1] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._entries))

    def __getitem__(self, index: int) -> T:
        return self._entries[index]


def should_recompute(counter: int, skip_interval: int, has_cached: bool) -> bool:
    """
    Decide whether an analyzer computes a fresh result on this cycle.

    A fresh result is computed when nothing is cached yet, or on every
    ``skip_interval``-th cycle. All other cycles reuse the cached result.
    """
    if not has_cached or skip_interval <= 1:
        return True
    return counter % skip_interval == 0


class AnalysisCache:
    """
    Last completed analysis plus the cycle counter that throttles recomputation.

    Args:
        skip_interval: Recompute on every n-th cycle (1 means every cycle)
    """

    def __init__(self, skip_interval: int = 1):
        self.skip_interval = skip_interval
        self.counter = 0
        self.value: Any = None

    def tick(self) -> bool:
        """Advance the cycle counter and report whether to compute fresh."""
        self.counter += 1
        return should_recompute(self.counter, self.skip_interval, self.value is not None)

    def store(self, value: Any) -> Any:
        self.value = value
        return value

    def reset(self) -> None:
        self.counter = 0
        self.value = None
