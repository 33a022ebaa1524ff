from __future__ import annotations

import math

from .clock import Clock

DEFAULT_BREAK_S = 120.0


def format_countdown(seconds: float) -> str:
    """Render remaining seconds as MM:SS, rounding partial seconds up."""

    total = max(0, int(math.ceil(seconds)))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


class RestBreak:
    """Countdown between rounds. Owns only its own timing state."""

    def __init__(self, *, clock: Clock, duration_s: float = DEFAULT_BREAK_S) -> None:
        if duration_s < 0.0:
            raise ValueError("duration_s must be >= 0")
        self._clock = clock
        self._duration_s = float(duration_s)
        self._started_at_ms: float | None = None
        self._skipped = False

    @property
    def duration_s(self) -> float:
        return self._duration_s

    @property
    def running(self) -> bool:
        return self._started_at_ms is not None and not self.is_over()

    def start(self) -> None:
        self._started_at_ms = self._clock.now()
        self._skipped = False

    def skip(self) -> None:
        self._skipped = True

    def time_remaining_s(self) -> float | None:
        if self._started_at_ms is None:
            return None
        if self._skipped:
            return 0.0
        elapsed_s = (self._clock.now() - self._started_at_ms) / 1000.0
        return max(0.0, self._duration_s - elapsed_s)

    def is_over(self) -> bool:
        remaining = self.time_remaining_s()
        return remaining is not None and remaining <= 0.0

    def display(self) -> str:
        remaining = self.time_remaining_s()
        return format_countdown(self._duration_s if remaining is None else remaining)
