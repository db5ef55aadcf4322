from __future__ import annotations

import asyncio

import pytest

from scrape_config_sidecar.scheduler import Scheduler


class _StopScheduler(Exception):
    pass


def test_run_due_fires_tasks_on_their_own_intervals(clock) -> None:
    scheduler = Scheduler(clock=clock)
    calls: list[str] = []
    scheduler.add_task("materialize", 15, lambda: calls.append("materialize"))
    scheduler.add_task("evict", 20, lambda: calls.append("evict"))

    assert scheduler.run_due() == []
    clock.advance(15)
    assert scheduler.run_due() == ["materialize"]
    clock.advance(5)
    assert scheduler.run_due() == ["evict"]
    clock.advance(10)
    assert scheduler.run_due() == ["materialize"]
    assert calls == ["materialize", "evict", "materialize"]


def test_run_due_drops_missed_ticks(clock) -> None:
    scheduler = Scheduler(clock=clock)
    calls: list[int] = []
    task = scheduler.add_task("materialize", 15, lambda: calls.append(1))

    clock.advance(100)
    scheduler.run_due()

    assert calls == [1]
    assert task.next_run == clock.now + 15


def test_failing_task_keeps_its_schedule(clock, caplog: pytest.LogCaptureFixture) -> None:
    scheduler = Scheduler(clock=clock)

    def boom() -> None:
        raise RuntimeError("disk on fire")

    task = scheduler.add_task("materialize", 15, boom)

    clock.advance(15)
    with caplog.at_level("ERROR"):
        scheduler.run_due()
    clock.advance(15)
    scheduler.run_due()

    assert task.runs == 2
    assert task.failures == 2
    assert "disk on fire" in caplog.text


def test_add_task_validates_arguments(clock) -> None:
    scheduler = Scheduler(clock=clock)
    scheduler.add_task("evict", 15, lambda: None)

    with pytest.raises(ValueError):
        scheduler.add_task("evict", 15, lambda: None)
    with pytest.raises(ValueError):
        scheduler.add_task("materialize", 0, lambda: None)


@pytest.mark.anyio
async def test_run_forever_keeps_a_fixed_period_when_the_body_is_slow(clock) -> None:
    fired_at: list[float] = []

    async def fake_sleep(delay: float) -> None:
        if len(fired_at) >= 3:
            raise _StopScheduler()
        clock.advance(delay)

    def slow_materialize() -> None:
        fired_at.append(clock.now)
        clock.advance(5)

    scheduler = Scheduler(clock=clock, sleep=fake_sleep)
    scheduler.add_task("materialize", 15, slow_materialize)

    with pytest.raises(_StopScheduler):
        await scheduler.run_forever()

    assert fired_at == [1015.0, 1030.0, 1045.0]


@pytest.mark.anyio
async def test_run_forever_runs_each_task_on_its_own_loop(clock) -> None:
    sleeps: list[float] = []
    calls: list[tuple[str, float]] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        if len(sleeps) > 12:
            raise _StopScheduler()
        clock.advance(delay)
        await asyncio.sleep(0)

    scheduler = Scheduler(clock=clock, sleep=fake_sleep)
    scheduler.add_task("materialize", 15, lambda: calls.append(("materialize", clock.now)))
    scheduler.add_task("evict", 30, lambda: calls.append(("evict", clock.now)))

    with pytest.raises(_StopScheduler):
        await scheduler.run_forever()

    names = {name for name, _ in calls}
    assert names == {"materialize", "evict"}
    assert all(delay > 0 for delay in sleeps)


@pytest.mark.anyio
async def test_run_forever_requires_tasks() -> None:
    with pytest.raises(RuntimeError):
        await Scheduler().run_forever()
