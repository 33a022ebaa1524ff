from __future__ import annotations

import heapq
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic milliseconds."""


class Scheduler(Clock, Protocol):
    """Clock that can also run a callback after a delay."""

    def after(self, delay_ms: float, callback: Callable[[], None]) -> "TimerHandle":
        ...

    def cancel(self, handle: "TimerHandle | None") -> None:
        ...


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic() * 1000.0


@dataclass(order=True, slots=True)
class TimerHandle:
    due_ms: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)
    fired: bool = field(default=False, compare=False)

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


class _TimerQueue:
    """Timers ordered by due time, ties broken by scheduling order."""

    def __init__(self) -> None:
        self._heap: list[TimerHandle] = []
        self._seq = 0

    def push(self, due_ms: float, callback: Callable[[], None]) -> TimerHandle:
        self._seq += 1
        handle = TimerHandle(due_ms=float(due_ms), seq=self._seq, callback=callback)
        heapq.heappush(self._heap, handle)
        return handle

    def peek_due(self) -> float | None:
        self._drop_cancelled()
        if not self._heap:
            return None
        return self._heap[0].due_ms

    def pop(self) -> TimerHandle:
        self._drop_cancelled()
        return heapq.heappop(self._heap)

    def __len__(self) -> int:
        return sum(1 for h in self._heap if h.active)

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)


class _QueueScheduler(ABC):
    def __init__(self) -> None:
        self._queue = _TimerQueue()

    @abstractmethod
    def now(self) -> float: ...

    def after(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        return self._queue.push(self.now() + float(delay_ms), callback)

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is None:
            return
        handle.cancelled = True

    def pending(self) -> int:
        return len(self._queue)

    def _fire(self, handle: TimerHandle) -> None:
        handle.fired = True
        handle.callback()


class RealScheduler(_QueueScheduler):
    """Host-clock scheduler; the frame loop calls run_due() to dispatch timers."""

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__()
        self._clock = clock or RealClock()

    def now(self) -> float:
        return self._clock.now()

    def run_due(self) -> int:
        fired = 0
        while True:
            due = self._queue.peek_due()
            if due is None or due > self.now():
                return fired
            self._fire(self._queue.pop())
            fired += 1


class VirtualScheduler(_QueueScheduler):
    """Deterministic scheduler whose time only moves when advanced."""

    def __init__(self, start_ms: float = 0.0) -> None:
        super().__init__()
        self._now = float(start_ms)

    def now(self) -> float:
        return self._now

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError("ms must be >= 0")
        target = self._now + float(ms)
        while True:
            due = self._queue.peek_due()
            if due is None or due > target:
                break
            # Walk time to the timer so callbacks observe their own due instant.
            self._now = max(self._now, due)
            self._fire(self._queue.pop())
        self._now = target

    def run_until_idle(self, *, max_timers: int = 100_000) -> None:
        for _ in range(max_timers):
            due = self._queue.peek_due()
            if due is None:
                return
            self._now = max(self._now, due)
            self._fire(self._queue.pop())
        raise RuntimeError(f"scheduler still busy after {max_timers} timers")
