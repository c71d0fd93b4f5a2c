"""
Periodic task scheduler
Runs the reconciliation and trailing-stop poll loops as independent asyncio tasks
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
import logging

logger = logging.getLogger(__name__)


@dataclass
class LoopStats:
    """Statistics for a loop"""
    name: str
    iterations: int = 0
    errors: int = 0
    last_run: Optional[datetime] = None
    avg_duration_ms: float = 0.0
    total_duration_ms: float = 0.0


@dataclass
class SchedulerConfig:
    """Loop error handling"""
    max_consecutive_errors: int = 5
    error_cooldown_seconds: float = 60.0
    error_retry_seconds: float = 1.0


class PeriodicTask:
    """
    Named periodic loop

    Each iteration awaits the callback, then sleeps for whatever is left of
    the interval. Consecutive failures push the loop into a cooldown instead
    of hammering a failing exchange. Loops never share a lock, so a slow
    iteration in one cannot delay another.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        config: Optional[SchedulerConfig] = None
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.config = config or SchedulerConfig()
        self._callback = callback

        self.running = False
        self._task: Optional[asyncio.Task] = None

        self.stats = LoopStats(name=name)
        self._consecutive_errors = 0
        self._error_cooldown_until: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.running and self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop"""
        if self.is_running:
            logger.warning(f"{self.name} loop already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info(f"{self.name} loop started (every {self.interval_seconds:.1f}s)")

    async def stop(self) -> None:
        """Stop the loop gracefully"""
        self.running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info(f"{self.name} loop stopped")

    async def _loop(self) -> None:
        while self.running:
            try:
                if self._in_cooldown():
                    await asyncio.sleep(min(self.interval_seconds, 10))
                    continue

                start_time = datetime.now(timezone.utc)
                await self._callback()
                self._update_stats(start_time)

                self._consecutive_errors = 0

                elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
                await asyncio.sleep(max(0.0, self.interval_seconds - elapsed))

            except asyncio.CancelledError:
                break
            except Exception as e:
                self._handle_error(e)
                await asyncio.sleep(self.config.error_retry_seconds)

    def _in_cooldown(self) -> bool:
        """Check if loop is in error cooldown"""
        if self._error_cooldown_until and datetime.now(timezone.utc) < self._error_cooldown_until:
            return True
        return False

    def _update_stats(self, start_time: datetime) -> None:
        """Update loop statistics"""
        now = datetime.now(timezone.utc)
        duration_ms = (now - start_time).total_seconds() * 1000

        self.stats.iterations += 1
        self.stats.last_run = now
        self.stats.total_duration_ms += duration_ms
        self.stats.avg_duration_ms = self.stats.total_duration_ms / self.stats.iterations

    def _handle_error(self, error: Exception) -> None:
        """Handle loop error"""
        self._consecutive_errors += 1
        self.stats.errors += 1

        logger.error(f"{self.name} loop error ({self._consecutive_errors}): {type(error).__name__}: {error}")

        if self._consecutive_errors >= self.config.max_consecutive_errors:
            cooldown = timedelta(seconds=self.config.error_cooldown_seconds)
            self._error_cooldown_until = datetime.now(timezone.utc) + cooldown
            self._consecutive_errors = 0
            logger.warning(f"{self.name} loop entering cooldown for {self.config.error_cooldown_seconds}s")

    async def run_once(self) -> Any:
        """Run a single iteration outside the loop"""
        start_time = datetime.now(timezone.utc)
        result = await self._callback()
        self._update_stats(start_time)
        return result

    def get_stats(self) -> Dict:
        """Get loop statistics"""
        return {
            "name": self.name,
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "iterations": self.stats.iterations,
            "errors": self.stats.errors,
            "avg_duration_ms": self.stats.avg_duration_ms,
            "last_run": self.stats.last_run.isoformat() if self.stats.last_run else None,
            "in_cooldown": self._in_cooldown()
        }
