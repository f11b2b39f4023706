"""Bounded, order-preserving buffers for console, network and activity events."""

import time
from collections import deque
from typing import Deque, Generic, List, Optional, TypeVar

from .models.context import ConsoleEntry
from .models.flow import FlowEvent
from .types import Clock

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Drop-oldest buffer holding at most ``capacity`` entries."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = int(capacity)
        self._items: Deque[T] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, entry: T) -> None:
        """Append at the tail, evicting the oldest entry when over capacity."""
        self._items.append(entry)
        while len(self._items) > self._capacity:
            self._items.popleft()

    def items(self) -> List[T]:
        """Copy of the contents, oldest first."""
        return list(self._items)

    def last(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))


class ConsoleBuffer(RingBuffer[ConsoleEntry]):
    """
    Console buffer that merges repeats.

    An entry whose message and source match the most recently pushed entry
    bumps that entry's count and moves its timestamp to the latest
    occurrence instead of taking a new slot, so log spam cannot flush older
    signals out of the buffer.
    """

    def push(self, entry: ConsoleEntry) -> None:
        previous = self.last()
        if (
            previous is not None
            and previous.message == entry.message
            and previous.source == entry.source
        ):
            previous.count += entry.count
            previous.timestamp = max(previous.timestamp, entry.timestamp)
            return
        super().push(entry)


class ActivityBuffer(RingBuffer[FlowEvent]):
    """
    Time-windowed buffer of recent activity.

    Events older than ``max_age_seconds`` (by their self-reported time) are
    dropped on every push and on ``sweep()``. The count capacity is only a
    safety valve for high-frequency bursts.
    """

    def __init__(
        self,
        max_age_seconds: float = 30.0,
        capacity: int = 5000,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(capacity)
        self.max_age_ms = max_age_seconds * 1000
        self._clock = clock

    def push(self, entry: FlowEvent) -> None:
        super().push(entry)
        self.sweep()

    def sweep(self) -> int:
        """
        Drop events that fell out of the window.

        Returns:
            Number of events removed
        """
        cutoff = self._clock() * 1000 - self.max_age_ms
        before = len(self._items)
        # Self-reported times are not monotonic, so check every entry
        self._items = deque(e for e in self._items if e.time >= cutoff)
        return before - len(self._items)
