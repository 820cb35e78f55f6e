"""
Task scheduler

One cooperative driver loop owns all timing state.  Each named task runs on
its own interval; due tasks run sequentially so jobs never overlap on the
shared store:

1. wallet_discovery (24h): pull new candidates from the leaderboard
2. quality_reeval (6h): re-score wallets from recent fills
3. position_refresh (60s): snapshot open positions of tracked wallets
4. synthesis (300s): aggregate -> synthesize -> reconcile
5. signal_tracking (30s): mark active signals to market, close on stop or tp3
6. expiry_sweep (60s): deactivate signals past expires_at
7. retention (24h): delete old inactive signals and stale positions

Last-run timestamps persist in ``system_state`` as ``last_run:<name>`` so a
restart picks up the cadence where it left off.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from convergence.config import EngineConfig
from convergence.datastore import DataStore
from convergence.models import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "last_run:"


class SchedulerState(enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SHUTTING_DOWN = "SHUTTING_DOWN"


@dataclass
class ScheduledTask:
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any] | Any]
    last_run: datetime | None = None
    runs: int = 0
    failures: int = 0

    def is_due(self, now: datetime) -> bool:
        if self.last_run is None:
            return True
        return (now - self.last_run).total_seconds() >= self.interval_seconds

    def next_due(self) -> datetime | None:
        if self.last_run is None:
            return None
        return self.last_run + timedelta(seconds=self.interval_seconds)


class TaskScheduler:
    """Single-loop scheduler over a set of :class:`ScheduledTask`.

    Parameters
    ----------
    store:
        Store used to persist and recover last-run timestamps.
    tasks:
        Tasks to drive; names must be unique.
    clock:
        Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        store: DataStore,
        tasks: list[ScheduledTask] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock
        self.state = SchedulerState.IDLE
        self._tasks: dict[str, ScheduledTask] = {}
        self._stop_event = asyncio.Event()
        for task in tasks or []:
            self.add_task(task)

    def add_task(self, task: ScheduledTask) -> None:
        if task.name in self._tasks:
            raise ValueError(f"duplicate task name: {task.name}")
        self._tasks[task.name] = task

    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._tasks.values())

    # -- Startup recovery --------------------------------------------------

    def recover_state(self) -> None:
        """Load last-run timestamps from ``system_state``."""
        for task in self._tasks.values():
            val = self.store.get_system_state(STATE_KEY_PREFIX + task.name)
            if not val:
                continue
            try:
                task.last_run = parse_iso(val)
                logger.info("Recovered %s last run = %s", task.name, val)
            except (ValueError, TypeError):
                logger.warning("Could not parse last run for %s: %r", task.name, val)

    # -- Execution ---------------------------------------------------------

    async def _run_task(self, task: ScheduledTask, now: datetime) -> bool:
        """Run one task; exceptions are logged and never escape.

        ``last_run`` is recorded on failure too, so a failing task waits a
        full interval before retrying.
        """
        self.state = SchedulerState.RUNNING
        ok = True
        try:
            result = task.func()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result
            task.runs += 1
        except Exception:
            ok = False
            task.failures += 1
            logger.exception("Task %s failed", task.name)
        finally:
            task.last_run = now
            try:
                self.store.set_system_state(STATE_KEY_PREFIX + task.name, to_iso(now))
            except Exception:
                logger.exception("Could not persist last run for %s", task.name)
            if self.state is SchedulerState.RUNNING:
                self.state = SchedulerState.IDLE
        return ok

    async def run_now(self, name: str) -> bool:
        """Run a task immediately, regardless of its cadence."""
        task = self._tasks.get(name)
        if task is None:
            raise KeyError(f"unknown task: {name}")
        return await self._run_task(task, self.clock())

    async def tick(self) -> list[str]:
        """Run every task that is due now, in registration order."""
        ran: list[str] = []
        for task in self._tasks.values():
            if self._stop_event.is_set():
                break
            now = self.clock()
            if task.is_due(now):
                await self._run_task(task, now)
                ran.append(task.name)
        return ran

    async def run(
        self,
        tick_interval_s: float = 1.0,
        max_ticks: int | None = None,
    ) -> None:
        """Main loop.

        Parameters
        ----------
        tick_interval_s:
            Seconds between cadence checks.
        max_ticks:
            If set, stop after this many ticks (for testing).
        """
        logger.info("Scheduler starting with %d tasks", len(self._tasks))
        tick = 0

        while not self._stop_event.is_set():
            if max_ticks is not None and tick >= max_ticks:
                break
            await self.tick()
            tick += 1
            if max_ticks is not None and tick >= max_ticks:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=tick_interval_s)
            except asyncio.TimeoutError:
                pass

        logger.info("Scheduler stopped after %d ticks", tick)

    def status(self) -> dict[str, dict[str, Any]]:
        result = {}
        for task in self._tasks.values():
            next_due = task.next_due()
            result[task.name] = {
                "interval_seconds": task.interval_seconds,
                "last_run": to_iso(task.last_run) if task.last_run else None,
                "next_due": to_iso(next_due) if next_due else None,
                "runs": task.runs,
                "failures": task.failures,
            }
        return result

    # -- Graceful shutdown -------------------------------------------------

    def request_shutdown(self) -> None:
        """Stop after the task currently running completes."""
        logger.info("Shutdown requested")
        self._stop_event.set()
        self.state = SchedulerState.SHUTTING_DOWN


def build_default_tasks(engine: Any, config: EngineConfig) -> list[ScheduledTask]:
    """The standard task set for a running :class:`ConvergenceEngine`.

    Order matters on a cold start: wallets are discovered and scored before
    positions are collected and synthesized.
    """
    return [
        ScheduledTask("wallet_discovery", config.DISCOVERY_INTERVAL, engine.discover_wallets),
        ScheduledTask("quality_reeval", config.QUALITY_REEVAL_INTERVAL, engine.reanalyze_wallets),
        ScheduledTask("position_refresh", config.POSITION_REFRESH_INTERVAL, engine.refresh_positions),
        ScheduledTask("synthesis", config.SYNTHESIS_INTERVAL, engine.run_synthesis_cycle),
        ScheduledTask("signal_tracking", config.SIGNAL_TRACKING_INTERVAL, engine.track_signals),
        ScheduledTask("expiry_sweep", config.EXPIRY_SWEEP_INTERVAL, engine.sweep_expired),
        ScheduledTask("retention", config.RETENTION_INTERVAL, engine.enforce_retention),
    ]
