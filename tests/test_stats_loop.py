import asyncio
from contextlib import suppress

import pytest

from wgsync.services.stats import StatsPoller, stats_loop


@pytest.mark.asyncio
async def test_stats_loop_survives_a_failing_cycle() -> None:
    class _Flaky:
        def __init__(self):
            self.calls = 0
            self.recovered = asyncio.Event()

        async def run_once(self):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("database is locked")
            self.recovered.set()

    flaky = _Flaky()
    task = asyncio.create_task(stats_loop(flaky, interval_seconds=1))

    await asyncio.wait_for(flaky.recovered.wait(), timeout=5)
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert flaky.calls == 2


@pytest.mark.asyncio
async def test_stats_poller_start_and_stop(reconciler, iface) -> None:
    poller = StatsPoller(reconciler.stats, interval_seconds=60)

    poller.start()
    assert poller.running
    for _ in range(100):
        if ("dump",) in iface.calls:
            break
        await asyncio.sleep(0.01)
    await poller.stop()

    assert not poller.running
    assert ("dump",) in iface.calls
    await poller.stop()
