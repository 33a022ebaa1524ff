from __future__ import annotations

import pytest

from reaction_age.clock import VirtualScheduler
from reaction_age.engine import Phase, ReactionTestConfig, Signal, build_reaction_test


def _fixed(**overrides: int) -> ReactionTestConfig:
    base = dict(
        round_count=1,
        stimuli_per_round=3,
        exposure_duration_ms=700,
        min_delay_ms=1000,
        max_delay_ms=1000,
        min_valid_reaction_time_ms=100,
        max_allowed_clicks_per_stimulus=3,
    )
    base.update(overrides)
    return ReactionTestConfig(**base)


def _engine(cfg: ReactionTestConfig, seed: int = 7):
    sched = VirtualScheduler()
    engine = build_reaction_test(scheduler=sched, seed=seed, config=cfg)
    return sched, engine


def test_default_config_values() -> None:
    cfg = ReactionTestConfig()
    assert cfg.round_count == 3
    assert cfg.stimuli_per_round == 30
    assert cfg.exposure_duration_ms == 700
    assert (cfg.min_delay_ms, cfg.max_delay_ms) == (1500, 3000)
    assert cfg.min_valid_reaction_time_ms == 100
    assert cfg.max_allowed_clicks_per_stimulus == 3


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"round_count": 0}, "round_count"),
        ({"stimuli_per_round": 0}, "stimuli_per_round"),
        ({"min_delay_ms": 2000, "max_delay_ms": 1000}, "min_delay_ms must be <= max_delay_ms"),
        ({"exposure_duration_ms": -1}, "exposure_duration_ms"),
        ({"max_allowed_clicks_per_stimulus": 0}, "max_allowed_clicks_per_stimulus"),
    ],
)
def test_invalid_config_is_rejected_at_construction(overrides: dict[str, int], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _fixed(**overrides)


def test_config_from_dict_validates_merged_values() -> None:
    with pytest.raises(ValueError, match="min_delay_ms must be <= max_delay_ms"):
        ReactionTestConfig.from_dict({"min_delay_ms": 2000, "max_delay_ms": 1250})


def test_config_from_dict_ignores_unknown_keys() -> None:
    cfg = ReactionTestConfig.from_dict({"round_count": "2", "colour": "red"})
    assert cfg.round_count == 2
    assert cfg.stimuli_per_round == 30
    assert ReactionTestConfig.from_dict(None) == ReactionTestConfig()


def test_signal_connect_and_disconnect() -> None:
    sig = Signal("ping")
    seen: list[int] = []
    disconnect = sig.connect(seen.append)
    sig.connect(lambda v: seen.append(v * 10))

    sig.emit(1)
    disconnect()
    sig.emit(2)

    assert seen == [1, 10, 20]
    assert len(sig) == 1
    disconnect()


def test_input_before_stimulus_is_ignored() -> None:
    sched, engine = _engine(_fixed())
    assert engine.register_input() is False

    engine.start_test()
    sched.advance(500)
    assert engine.phase is Phase.AWAITING_STIMULUS
    assert engine.register_input() is False

    sched.advance(500)
    assert engine.phase is Phase.STIMULUS_VISIBLE
    sched.advance(700)
    assert engine.round_times() == []


def test_input_below_floor_is_rejected_but_later_click_counts() -> None:
    sched, engine = _engine(_fixed())
    engine.start_test()
    sched.advance(1000)

    sched.advance(50)
    assert engine.register_input() is False
    sched.advance(100)
    assert engine.register_input() is True

    sched.advance(550)
    assert engine.round_times() == [150]


def test_only_first_valid_reaction_counts() -> None:
    sched, engine = _engine(_fixed())
    engine.start_test()
    sched.advance(1200)

    assert engine.register_input() is True
    sched.advance(200)
    assert engine.register_input() is False
    sched.advance(300)

    assert engine.round_times() == [200]
    assert engine.phase is Phase.AWAITING_STIMULUS


def test_stimulus_stays_visible_for_full_exposure_after_reaction() -> None:
    sched, engine = _engine(_fixed())
    shown: list[float] = []
    hidden: list[float] = []
    engine.stimulus_shown.connect(lambda i, n: shown.append(sched.now()))
    engine.stimulus_hidden.connect(lambda: hidden.append(sched.now()))

    engine.start_test()
    sched.advance(1250)
    engine.register_input()
    sched.advance(1450)
    sched.advance(700)

    assert shown == [1000.0, 2700.0]
    assert hidden == [1700.0, 3400.0]


def test_excess_clicks_pause_round_exactly_once() -> None:
    sched, engine = _engine(_fixed())
    abuse: list[bool] = []
    hidden: list[float] = []
    engine.abuse_detected.connect(lambda: abuse.append(True))
    engine.stimulus_hidden.connect(lambda: hidden.append(sched.now()))

    engine.start_test()
    sched.advance(1150)
    assert engine.register_input() is True
    assert engine.register_input() is False
    assert engine.register_input() is False
    assert engine.register_input() is False

    assert engine.phase is Phase.ROUND_PAUSED
    assert abuse == [True]
    assert hidden == [1150.0]

    assert engine.register_input() is False
    assert abuse == [True]

    sched.advance(10_000)
    assert sched.pending() == 0
    assert engine.round_times() == []


def test_resume_after_abuse_keeps_round_progress_and_stimulus_index() -> None:
    sched, engine = _engine(_fixed())
    shown: list[int] = []
    engine.stimulus_shown.connect(lambda i, n: shown.append(i))

    engine.start_test()
    sched.advance(1200)
    engine.register_input()
    sched.advance(1500)  # second stimulus shown at 2700
    sched.advance(200)
    for _ in range(4):
        engine.register_input()
    assert engine.phase is Phase.ROUND_PAUSED

    assert engine.resume_after_abuse() is True
    assert engine.resume_after_abuse() is False
    assert engine.phase is Phase.AWAITING_STIMULUS
    assert engine.round_times() == [200]
    assert engine.stimulus_index == 1

    sched.advance(1000)
    assert shown == [1, 2, 2]


def test_retry_discards_round_progress() -> None:
    sched, engine = _engine(_fixed())
    hidden: list[float] = []
    engine.stimulus_hidden.connect(lambda: hidden.append(sched.now()))

    engine.start_test()
    sched.advance(1300)
    engine.register_input()
    sched.advance(1400)  # second stimulus visible
    assert engine.round_times() == [300]
    assert engine.phase is Phase.STIMULUS_VISIBLE

    assert engine.retry_current_round() is True
    assert hidden == [1700.0, 2700.0]
    assert engine.round_times() == []
    assert engine.stimulus_index == 0
    assert engine.current_round == 1
    assert engine.phase is Phase.AWAITING_STIMULUS
    assert sched.pending() == 1


def test_retry_emits_hidden_before_new_delay_is_armed() -> None:
    sched, engine = _engine(_fixed())
    at_hidden: list[tuple[int, list[int]]] = []
    engine.stimulus_hidden.connect(lambda: at_hidden.append((sched.pending(), engine.round_times())))

    engine.start_test()
    sched.advance(1100)
    assert engine.retry_current_round() is True

    assert at_hidden == [(0, [])]
    assert sched.pending() == 1


def test_retry_from_paused_round_restarts_at_first_stimulus() -> None:
    sched, engine = _engine(_fixed())
    shown: list[int] = []
    engine.stimulus_shown.connect(lambda i, n: shown.append(i))

    engine.start_test()
    sched.advance(1200)
    engine.register_input()
    sched.advance(1500)  # second stimulus shown at 2700
    for _ in range(4):
        engine.register_input()
    assert engine.phase is Phase.ROUND_PAUSED
    assert engine.round_times() == [200]
    assert sched.pending() == 0

    assert engine.retry_current_round() is True
    assert engine.phase is Phase.AWAITING_STIMULUS
    assert engine.stimulus_index == 0
    assert engine.round_times() == []
    assert engine.current_round == 1
    assert sched.pending() == 1

    sched.advance(1000)
    assert shown == [1, 2, 1]


def test_retry_outside_round_is_noop() -> None:
    sched, engine = _engine(_fixed(stimuli_per_round=1))
    assert engine.retry_current_round() is False

    engine.start_test()
    sched.run_until_idle()
    assert engine.phase is Phase.ROUND_COMPLETE
    assert engine.retry_current_round() is False
    assert len(engine.round_summaries()) == 1


def test_start_next_round_only_between_rounds() -> None:
    sched, engine = _engine(_fixed(round_count=2, stimuli_per_round=1))
    engine.start_test()
    assert engine.start_next_round() is False
    assert engine.current_round == 1

    sched.run_until_idle()
    assert engine.start_next_round() is True
    assert engine.current_round == 2

    sched.run_until_idle()
    assert engine.is_test_complete is True
    assert engine.start_next_round() is False
    assert engine.current_round == 2


def test_reset_restores_initial_state() -> None:
    sched, engine = _engine(_fixed(stimuli_per_round=1))
    engine.start_test()
    sched.advance(1300)
    engine.register_input()
    sched.run_until_idle()
    assert engine.round_summaries()

    engine.reset_full_test()
    assert engine.phase is Phase.IDLE
    assert engine.current_round == 0
    assert engine.round_summaries() == []
    assert engine.final_results() is None
    assert sched.pending() == 0

    engine.start_test()
    assert engine.current_round == 1
    assert engine.stimulus_index == 0
    assert engine.round_times() == []
    assert engine.phase is Phase.AWAITING_STIMULUS


def test_reset_mid_stimulus_cancels_pending_timers() -> None:
    sched, engine = _engine(_fixed())
    engine.start_test()
    sched.advance(1100)
    engine.reset_full_test()

    assert sched.pending() == 0
    sched.advance(5000)
    assert engine.phase is Phase.IDLE


def test_first_delay_stays_within_bounds_for_many_seeds() -> None:
    cfg = _fixed(min_delay_ms=500, max_delay_ms=900)
    for seed in range(25):
        sched, engine = _engine(cfg, seed=seed)
        shown: list[float] = []
        engine.stimulus_shown.connect(lambda i, n: shown.append(sched.now()))
        engine.start_test()
        sched.advance(900)
        assert len(shown) == 1
        assert 500.0 <= shown[0] <= 900.0


def test_snapshot_reports_progress() -> None:
    sched, engine = _engine(_fixed(round_count=2))
    engine.start_test()
    sched.advance(1000)

    snap = engine.snapshot()
    assert snap.stimulus_visible is True
    assert snap.round_number == 1
    assert snap.round_count == 2
    assert snap.stimulus_number == 1
    assert snap.stimuli_per_round == 3
    assert snap.valid_in_round == 0
    assert snap.test_complete is False
