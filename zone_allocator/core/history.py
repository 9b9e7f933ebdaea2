from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from zone_allocator.core.region import RegionKind


@dataclass(frozen=True, slots=True)
class PlacementRecord:
    region_id: str
    kind: RegionKind
    timestamp: float


class DistributionHistory:
    """Fixed-capacity circular buffer of recent placements.

    Writes go to `head` and overwrite the oldest entry once the buffer is full; nothing
    is ever shifted. Iteration yields entries oldest first.
    """

    def __init__(self, capacity: int = 50) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._data: list[PlacementRecord | None] = [None] * capacity
        self._head = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._size

    def append(self, record: PlacementRecord) -> None:
        self._data[self._head] = record
        self._head = (self._head + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def _tail(self) -> int:
        return (self._head - self._size) % self._capacity

    def __iter__(self) -> Iterator[PlacementRecord]:
        start = self._tail()
        for i in range(self._size):
            entry = self._data[(start + i) % self._capacity]
            assert entry is not None
            yield entry

    def recent(self, count: int) -> list[PlacementRecord]:
        """Last `count` entries, oldest first."""

        if count <= 0:
            return []
        n = min(count, self._size)
        start = (self._head - n) % self._capacity
        out: list[PlacementRecord] = []
        for i in range(n):
            entry = self._data[(start + i) % self._capacity]
            assert entry is not None
            out.append(entry)
        return out

    def clear(self) -> None:
        self._data = [None] * self._capacity
        self._head = 0
        self._size = 0
