import anyio
import pytest

from oob_hunter.scheduler import PollingScheduler


async def test_loop_keeps_running_after_failures():
    calls = []

    async def cycle(handler):
        calls.append(handler)
        if len(calls) < 3:
            raise RuntimeError("transient")

    sched = PollingScheduler(cycle, lambda: 5)
    sched.start(print)
    with anyio.fail_after(2):
        while sched.cycles < 4:
            await anyio.sleep(0.01)
    sched.stop()
    await sched.wait_stopped()

    assert not sched.running
    assert all(h is print for h in calls)


async def test_interval_read_before_each_wait():
    interval = {"ms": 10}
    seen = []

    async def cycle(handler):
        seen.append(interval["ms"])

    sched = PollingScheduler(cycle, lambda: interval["ms"])
    sched.start(print)
    with anyio.fail_after(2):
        while len(seen) < 2:
            await anyio.sleep(0.01)
    interval["ms"] = 60_000
    with anyio.fail_after(2):
        while len(seen) < 3:
            await anyio.sleep(0.01)
    count = len(seen)
    sched.stop()
    with anyio.fail_after(1):
        await sched.wait_stopped()
    assert len(seen) == count
    assert seen[-1] == 60_000


async def test_stop_before_first_cycle_runs_nothing():
    calls = []

    async def cycle(handler):
        calls.append(1)

    sched = PollingScheduler(cycle, lambda: 10)
    sched.start(print)
    sched.stop()
    await sched.wait_stopped()
    assert calls == []


async def test_in_flight_cycle_completes_after_stop():
    started, release = anyio.Event(), anyio.Event()
    finished = []

    async def cycle(handler):
        started.set()
        await release.wait()
        finished.append(1)

    sched = PollingScheduler(cycle, lambda: 10)
    sched.start(print)
    await started.wait()
    sched.stop()
    release.set()
    await sched.wait_stopped()
    assert finished == [1]
    assert sched.cycles == 1


@pytest.mark.parametrize("restarts", [1, 3])
async def test_restart_uses_fresh_stop_event(restarts):
    calls = []

    async def cycle(handler):
        calls.append(1)

    sched = PollingScheduler(cycle, lambda: 60_000)
    for _ in range(restarts):
        sched.start(print)
        await anyio.sleep(0.02)
        sched.stop()
        await sched.wait_stopped()
    assert len(calls) == restarts


def test_start_without_running_loop_leaves_scheduler_idle():
    async def cycle(handler):
        pass

    sched = PollingScheduler(cycle, lambda: 5)
    with pytest.raises(RuntimeError):
        sched.start(print)
    assert not sched.running
    assert sched._task is None
