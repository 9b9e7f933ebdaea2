"""Cooperative timers.

The allocator never sleeps; it asks a `Scheduler` to call it back later and keeps the
returned handle so it can cancel it. `ManualScheduler` runs on a virtual clock that
tests (and scripts) advance explicitly; `AsyncioScheduler` defers to the running
event loop.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...


@dataclass(slots=True)
class ManualTimer:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(order=True, slots=True)
class _Entry:
    due: float
    seq: int
    timer: ManualTimer = field(compare=False)


class ManualScheduler:
    """Virtual-clock scheduler. Timers fire in due order, FIFO among equal due times."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[_Entry] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(due=self._now + max(0.0, delay_s), callback=callback)
        heapq.heappush(self._queue, _Entry(due=timer.due, seq=next(self._seq), timer=timer))
        return timer

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every timer that comes due. Returns how many ran."""

        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0].due <= target:
            entry = heapq.heappop(self._queue)
            self._now = entry.due
            if entry.timer.cancelled:
                continue
            entry.timer.callback()
            ran += 1
        self._now = target
        return ran

    @property
    def pending(self) -> int:
        return sum(1 for e in self._queue if not e.timer.cancelled)


class AsyncioScheduler:
    """Scheduler backed by the running asyncio loop (used inside the API process)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        # Without a pinned loop, use whichever loop is serving the current request.
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(delay_s, callback)
