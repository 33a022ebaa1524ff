from __future__ import annotations

import math
import statistics
from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RoundSummary:
    round_number: int
    count: int
    average_ms: int  # 0 when the round produced no valid reactions
    times_ms: tuple[int, ...]
    median_ms: float = 0.0
    stdev_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class FinalResult:
    """Grand average over round averages; each round weighs the same."""

    grand_average_ms: int
    round_averages_ms: tuple[int, ...]
    rounds: tuple[RoundSummary, ...] = ()


def round_half_up(x: float) -> int:
    # Python's round() is banker's rounding; timings use half-up.
    return int(math.floor(x + 0.5))


def summarize_round(round_number: int, valid_times_ms: Sequence[int]) -> RoundSummary:
    times = tuple(int(t) for t in valid_times_ms)
    if not times:
        return RoundSummary(round_number=int(round_number), count=0, average_ms=0, times_ms=())

    return RoundSummary(
        round_number=int(round_number),
        count=len(times),
        average_ms=round_half_up(sum(times) / len(times)),
        times_ms=times,
        median_ms=float(statistics.median(times)),
        stdev_ms=float(statistics.stdev(times)) if len(times) > 1 else 0.0,
    )


def summarize_test(rounds: Sequence[RoundSummary]) -> FinalResult | None:
    """Reduce completed rounds to the test result, or None if there are none."""

    if not rounds:
        return None
    averages = tuple(r.average_ms for r in rounds)
    return FinalResult(
        grand_average_ms=round_half_up(sum(averages) / len(averages)),
        round_averages_ms=averages,
        rounds=tuple(rounds),
    )
