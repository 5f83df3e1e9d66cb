import asyncio
import logging

import pytest

from launchsniper.scheduler import Scheduler


class TestScheduler:
    @pytest.mark.asyncio
    async def test_runs_until_cancelled(self):
        scheduler = Scheduler(logging.getLogger("test"))
        calls = []

        async def job():
            calls.append(1)

        task = scheduler.every("tick", 0.01, job)
        await asyncio.sleep(0.06)
        assert scheduler.running == ["tick"]

        await scheduler.cancel_all()
        seen = len(calls)
        await asyncio.sleep(0.03)

        assert seen >= 2
        assert len(calls) == seen
        assert not task.running
        assert scheduler.running == []

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_schedule(self):
        scheduler = Scheduler(logging.getLogger("test"))

        async def job():
            raise RuntimeError("flaky")

        task = scheduler.every("flaky", 0.01, job)
        await asyncio.sleep(0.05)
        await scheduler.cancel("flaky")

        assert task.failures >= 2
        assert task.runs == 0

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self):
        scheduler = Scheduler(logging.getLogger("test"))

        async def job():
            pass

        scheduler.every("tick", 1.0, job)
        with pytest.raises(ValueError):
            scheduler.every("tick", 1.0, job)
        await scheduler.cancel_all()

