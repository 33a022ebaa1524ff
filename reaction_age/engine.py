from __future__ import annotations

import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from enum import StrEnum
from typing import Any

from .clock import Scheduler, TimerHandle
from .stats import FinalResult, RoundSummary, round_half_up, summarize_round, summarize_test

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReactionTestConfig:
    round_count: int = 3
    stimuli_per_round: int = 30
    exposure_duration_ms: int = 700
    min_delay_ms: int = 1500
    max_delay_ms: int = 3000
    min_valid_reaction_time_ms: int = 100
    max_allowed_clicks_per_stimulus: int = 3

    def __post_init__(self) -> None:
        if self.round_count < 1:
            raise ValueError("round_count must be >= 1")
        if self.stimuli_per_round < 1:
            raise ValueError("stimuli_per_round must be >= 1")
        if self.exposure_duration_ms < 0:
            raise ValueError("exposure_duration_ms must be >= 0")
        if self.min_delay_ms < 0:
            raise ValueError("min_delay_ms must be >= 0")
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must be <= max_delay_ms")
        if self.min_valid_reaction_time_ms < 0:
            raise ValueError("min_valid_reaction_time_ms must be >= 0")
        if self.max_allowed_clicks_per_stimulus < 1:
            raise ValueError("max_allowed_clicks_per_stimulus must be >= 1")

    @classmethod
    def from_dict(cls, data: object) -> "ReactionTestConfig":
        if not isinstance(data, Mapping):
            return cls()
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {k: int(v) for k, v in data.items() if k in known}
        return cls(**values)


class Phase(StrEnum):
    IDLE = "idle"
    AWAITING_STIMULUS = "awaiting_stimulus"
    STIMULUS_VISIBLE = "stimulus_visible"
    ROUND_PAUSED = "round_paused"
    ROUND_COMPLETE = "round_complete"


_IN_ROUND = (Phase.AWAITING_STIMULUS, Phase.STIMULUS_VISIBLE, Phase.ROUND_PAUSED)


class Signal:
    """Synchronous observer list. connect() returns a disconnect callable."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: list[Callable[..., None]] = []

    @property
    def name(self) -> str:
        return self._name

    def connect(self, listener: Callable[..., None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def disconnect() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return disconnect

    def emit(self, *args: object) -> None:
        for listener in list(self._listeners):
            listener(*args)

    def __len__(self) -> int:
        return len(self._listeners)


@dataclass(frozen=True, slots=True)
class ReactionSnapshot:
    """View model for the UI (pure data)."""

    phase: Phase
    round_number: int
    round_count: int
    stimulus_number: int  # 1-based while a stimulus is visible
    stimuli_per_round: int
    valid_in_round: int
    test_complete: bool

    @property
    def stimulus_visible(self) -> bool:
        return self.phase is Phase.STIMULUS_VISIBLE


class ReactionTestEngine:
    """Simple visual reaction-time test: rounds of randomly delayed stimuli.

    - Time and timers come exclusively from the injected Scheduler.
    - Pre-delays come from an RNG seeded at construction.
    - A stimulus stays up for the full exposure; only the first valid click
      per stimulus counts, and too many clicks pause the round.
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        seed: int,
        config: ReactionTestConfig | None = None,
    ) -> None:
        cfg = config or ReactionTestConfig()

        self._scheduler = scheduler
        self._cfg = cfg
        self._seed = int(seed)
        self._rng = random.Random(self._seed)

        self.stimulus_shown = Signal("stimulus_shown")
        self.stimulus_hidden = Signal("stimulus_hidden")
        self.round_complete = Signal("round_complete")
        self.abuse_detected = Signal("abuse_detected")

        self._phase = Phase.IDLE
        self._round = 0
        self._stimulus_index = 0
        self._times: list[int] = []
        self._summaries: list[RoundSummary] = []
        self._shown_at_ms = 0.0
        self._clicks = 0
        self._pending_ms: int | None = None
        self._timer: TimerHandle | None = None

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def config(self) -> ReactionTestConfig:
        return self._cfg

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def current_round(self) -> int:
        return self._round

    @property
    def stimulus_index(self) -> int:
        return self._stimulus_index

    @property
    def is_test_complete(self) -> bool:
        return len(self._summaries) >= self._cfg.round_count

    def round_times(self) -> list[int]:
        return list(self._times)

    def round_summaries(self) -> list[RoundSummary]:
        return list(self._summaries)

    def final_results(self) -> FinalResult | None:
        return summarize_test(self._summaries)

    def snapshot(self) -> ReactionSnapshot:
        visible = self._phase is Phase.STIMULUS_VISIBLE
        return ReactionSnapshot(
            phase=self._phase,
            round_number=self._round,
            round_count=self._cfg.round_count,
            stimulus_number=self._stimulus_index + 1 if visible else self._stimulus_index,
            stimuli_per_round=self._cfg.stimuli_per_round,
            valid_in_round=len(self._times),
            test_complete=self.is_test_complete,
        )

    # Lifecycle

    def start_test(self) -> None:
        self.reset_full_test()
        self.start_next_round()

    def start_next_round(self) -> bool:
        if self._phase not in (Phase.IDLE, Phase.ROUND_COMPLETE):
            return False
        if self._round >= self._cfg.round_count:
            return False
        self._round += 1
        log.info("Round %d/%d started", self._round, self._cfg.round_count)
        self._begin_round()
        return True

    def reset_full_test(self) -> None:
        self._cancel_timer()
        self._phase = Phase.IDLE
        self._round = 0
        self._summaries.clear()
        self._clear_round()
        log.info("Test reset")

    def retry_current_round(self) -> bool:
        if self._phase not in _IN_ROUND:
            return False
        was_visible = self._phase is Phase.STIMULUS_VISIBLE
        self._cancel_timer()
        log.info("Retrying round %d", self._round)
        if was_visible:
            self.stimulus_hidden.emit()
        self._begin_round()
        return True

    def resume_after_abuse(self) -> bool:
        if self._phase is not Phase.ROUND_PAUSED:
            return False
        log.info("Round %d resumed at stimulus %d", self._round, self._stimulus_index + 1)
        self._schedule_stimulus()
        return True

    # Input guard

    def register_input(self) -> bool:
        """Record a raw click/keypress. Returns True if taken as the reaction."""

        if self._phase is not Phase.STIMULUS_VISIBLE:
            log.debug("Input rejected in phase %s", self._phase.value)
            return False

        self._clicks += 1
        if self._clicks > self._cfg.max_allowed_clicks_per_stimulus:
            self._pause_for_abuse()
            return False

        if self._pending_ms is not None:
            return False

        elapsed = self._scheduler.now() - self._shown_at_ms
        if elapsed < self._cfg.min_valid_reaction_time_ms:
            log.debug("Input rejected: %.1f ms is below the valid floor", elapsed)
            return False

        self._pending_ms = round_half_up(elapsed)
        return True

    # Stimulus cycle

    def _begin_round(self) -> None:
        self._clear_round()
        self._schedule_stimulus()

    def _clear_round(self) -> None:
        self._stimulus_index = 0
        self._times = []
        self._clicks = 0
        self._pending_ms = None

    def _schedule_stimulus(self) -> None:
        self._cancel_timer()
        self._phase = Phase.AWAITING_STIMULUS
        self._pending_ms = None
        delay = self._rng.randint(self._cfg.min_delay_ms, self._cfg.max_delay_ms)
        self._timer = self._scheduler.after(delay, self._show_stimulus)

    def _show_stimulus(self) -> None:
        self._timer = None
        self._phase = Phase.STIMULUS_VISIBLE
        self._shown_at_ms = self._scheduler.now()
        self._clicks = 0
        self._pending_ms = None
        self._timer = self._scheduler.after(self._cfg.exposure_duration_ms, self._hide_stimulus)

        index = self._stimulus_index + 1
        log.debug("Stimulus %d/%d shown", index, self._cfg.stimuli_per_round)
        self.stimulus_shown.emit(index, self._cfg.stimuli_per_round)

    def _hide_stimulus(self) -> None:
        self._timer = None
        pending = self._pending_ms
        self._pending_ms = None
        if pending is not None:
            self._times.append(pending)
        log.debug(
            "Stimulus %d hidden (%s)",
            self._stimulus_index + 1,
            "miss" if pending is None else f"{pending} ms",
        )
        self._stimulus_index += 1

        if self._stimulus_index >= self._cfg.stimuli_per_round:
            summary = self._finish_round()
            self.stimulus_hidden.emit()
            self.round_complete.emit(summary, self._round >= self._cfg.round_count)
            return

        self._schedule_stimulus()
        self.stimulus_hidden.emit()

    def _pause_for_abuse(self) -> None:
        self._cancel_timer()
        self._phase = Phase.ROUND_PAUSED
        self._pending_ms = None
        log.warning(
            "Too many clicks on stimulus %d of round %d; round paused",
            self._stimulus_index + 1,
            self._round,
        )
        self.stimulus_hidden.emit()
        self.abuse_detected.emit()

    def _finish_round(self) -> RoundSummary:
        self._phase = Phase.ROUND_COMPLETE
        summary = summarize_round(self._round, self._times)
        self._summaries.append(summary)
        log.info(
            "Round %d complete: %d valid, average %d ms",
            summary.round_number,
            summary.count,
            summary.average_ms,
        )
        return summary

    def _cancel_timer(self) -> None:
        self._scheduler.cancel(self._timer)
        self._timer = None


def build_reaction_test(
    *,
    scheduler: Scheduler,
    seed: int,
    config: ReactionTestConfig | None = None,
) -> ReactionTestEngine:
    return ReactionTestEngine(scheduler=scheduler, seed=seed, config=config)
