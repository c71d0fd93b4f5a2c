"""
Periodic Task Tests.
"""

import asyncio

import pytest

from trade_bridge.core.scheduler import PeriodicTask, SchedulerConfig


class TestPeriodicTask:

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        task = PeriodicTask("tick", tick, 0.01)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

        assert len(calls) >= 2
        assert not task.is_running
        assert task.get_stats()["iterations"] == len(calls)

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_loop(self):
        async def tick():
            pass

        task = PeriodicTask("tick", tick, 10)
        task.start()
        first = task._task
        task.start()

        assert task._task is first
        await task.stop()

    @pytest.mark.asyncio
    async def test_errors_lead_to_cooldown(self):
        async def boom():
            raise RuntimeError("exchange down")

        config = SchedulerConfig(max_consecutive_errors=2, error_cooldown_seconds=60, error_retry_seconds=0.001)
        task = PeriodicTask("boom", boom, 0.01, config)
        task.start()
        await asyncio.sleep(0.05)

        stats = task.get_stats()
        await task.stop()

        assert stats["errors"] == 2
        assert stats["in_cooldown"]
        assert stats["iterations"] == 0

    @pytest.mark.asyncio
    async def test_run_once(self):
        async def value():
            return 42

        task = PeriodicTask("once", value, 10)

        assert await task.run_once() == 42
        assert task.get_stats()["iterations"] == 1
        assert task.get_stats()["last_run"] is not None
