import asyncio

import pytest

from eden.scheduler import PeriodicTask, Scheduler


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, lambda: None)


@pytest.mark.asyncio
async def test_periodic_task_ticks():
    calls = []
    task = PeriodicTask("counter", 0.01, lambda: calls.append(1)).start()
    await asyncio.sleep(0.06)
    task.cancel()
    await task.wait_cancelled()
    assert len(calls) >= 3
    assert task.ticks == len(calls)
    assert not task.running


@pytest.mark.asyncio
async def test_async_callbacks_do_not_overlap():
    active = 0
    overlaps = []

    async def slow():
        nonlocal active
        active += 1
        overlaps.append(active)
        await asyncio.sleep(0.03)
        active -= 1

    task = PeriodicTask("slow", 0.005, slow).start()
    await asyncio.sleep(0.1)
    task.cancel()
    await task.wait_cancelled()
    assert overlaps
    assert max(overlaps) == 1


@pytest.mark.asyncio
async def test_failing_tick_keeps_running():
    calls = []

    def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    task = PeriodicTask("flaky", 0.01, flaky).start()
    await asyncio.sleep(0.05)
    task.cancel()
    await task.wait_cancelled()
    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_schedule_replaces_same_name():
    scheduler = Scheduler()
    first = scheduler.schedule("idle", 10, lambda: None)
    second = scheduler.schedule("idle", 10, lambda: None)
    await asyncio.sleep(0)
    assert scheduler.get("idle") is second
    assert not first.running
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_cancel_and_shutdown():
    scheduler = Scheduler()
    a = scheduler.schedule("a", 10, lambda: None)
    b = scheduler.schedule("b", 10, lambda: None)
    assert scheduler.cancel("a") is True
    assert scheduler.cancel("missing") is False
    await scheduler.shutdown()
    assert scheduler.get("a") is None
    assert scheduler.get("b") is None
    await asyncio.sleep(0)
    assert not a.running
    assert not b.running
