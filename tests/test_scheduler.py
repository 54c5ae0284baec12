import asyncio

import pytest

from meterbar.scheduler import IntervalScheduler, ManualScheduler


class TestIntervalScheduler:
    @pytest.mark.asyncio
    async def test_ticks_immediately_then_on_interval(self) -> "None":
        scheduler = IntervalScheduler(interval_seconds=0.01)
        ticks = 0

        async for _ in scheduler.ticks():
            ticks += 1
            if ticks == 3:
                scheduler.stop()

        assert ticks == 3

    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(self) -> "None":
        scheduler = IntervalScheduler(interval_seconds=3600)
        ticks = 0

        async def _consume() -> "None":
            nonlocal ticks
            async for _ in scheduler.ticks():
                ticks += 1

        task = asyncio.create_task(_consume())
        await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert ticks == 1


class TestManualScheduler:
    @pytest.mark.asyncio
    async def test_ticks_only_on_demand(self) -> "None":
        scheduler = ManualScheduler()
        scheduler.tick()
        scheduler.tick()
        scheduler.stop()

        ticks = [None async for _ in scheduler.ticks()]
        assert len(ticks) == 2
