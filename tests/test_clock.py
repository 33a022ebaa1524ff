from __future__ import annotations

from dataclasses import dataclass

import pytest

from reaction_age.clock import RealScheduler, VirtualScheduler, _QueueScheduler


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def test_virtual_scheduler_fires_in_due_order_with_ties_by_schedule_order() -> None:
    sched = VirtualScheduler()
    fired: list[tuple[str, float]] = []

    sched.after(300, lambda: fired.append(("c", sched.now())))
    sched.after(100, lambda: fired.append(("a", sched.now())))
    sched.after(300, lambda: fired.append(("d", sched.now())))
    sched.after(100, lambda: fired.append(("b", sched.now())))

    sched.advance(1000)

    assert fired == [("a", 100.0), ("b", 100.0), ("c", 300.0), ("d", 300.0)]
    assert sched.now() == 1000.0


def test_virtual_scheduler_does_not_fire_before_due_time() -> None:
    sched = VirtualScheduler()
    fired: list[float] = []
    sched.after(500, lambda: fired.append(sched.now()))

    sched.advance(499)
    assert fired == []
    assert sched.pending() == 1

    sched.advance(1)
    assert fired == [500.0]
    assert sched.pending() == 0


def test_timers_scheduled_from_callbacks_run_in_same_advance_when_due() -> None:
    sched = VirtualScheduler()
    fired: list[float] = []

    def first() -> None:
        fired.append(sched.now())
        sched.after(200, lambda: fired.append(sched.now()))

    sched.after(100, first)
    sched.advance(250)
    assert fired == [100.0]

    sched.advance(50)
    assert fired == [100.0, 300.0]


def test_cancel_prevents_callback_and_tolerates_none_and_fired_handles() -> None:
    sched = VirtualScheduler()
    fired: list[str] = []

    h1 = sched.after(100, lambda: fired.append("cancelled"))
    h2 = sched.after(100, lambda: fired.append("kept"))
    sched.cancel(h1)
    sched.cancel(None)

    sched.advance(100)
    assert fired == ["kept"]
    assert h2.fired is True
    assert h1.active is False

    sched.cancel(h2)
    assert fired == ["kept"]


def test_negative_delay_is_rejected() -> None:
    sched = VirtualScheduler()
    with pytest.raises(ValueError, match="delay_ms"):
        sched.after(-1, lambda: None)
    with pytest.raises(ValueError):
        sched.advance(-5)


def test_run_until_idle_drains_queue() -> None:
    sched = VirtualScheduler(start_ms=50.0)
    fired: list[float] = []
    sched.after(10, lambda: fired.append(sched.now()))
    sched.after(5000, lambda: fired.append(sched.now()))

    sched.run_until_idle()

    assert fired == [60.0, 5050.0]
    assert sched.pending() == 0


def test_real_scheduler_dispatches_only_due_timers() -> None:
    clock = FakeClock(t=1000.0)
    sched = RealScheduler(clock)
    fired: list[str] = []
    sched.after(16, lambda: fired.append("frame"))
    sched.after(700, lambda: fired.append("exposure"))

    assert sched.run_due() == 0

    clock.advance(20)
    assert sched.run_due() == 1
    assert fired == ["frame"]

    clock.advance(700)
    assert sched.run_due() == 1
    assert fired == ["frame", "exposure"]


def test_queue_scheduler_base_requires_a_time_source() -> None:
    with pytest.raises(TypeError):
        _QueueScheduler()  # type: ignore[abstract]
