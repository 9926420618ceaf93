"""
Agent Scheduler.

Two independent timers, one for metric reports and one for update checks,
feed a single queue. One consumer takes events off the queue and runs each
cycle to completion before looking at the next, so no two cycles ever run
at the same time and the updater never races itself.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

UPDATE_CHECK_INTERVAL = 30 * 60  # seconds


class TaskKind(Enum):
    """Kinds of scheduled work."""
    REPORT = "report"
    UPDATE_CHECK = "update_check"


class Scheduler:
    """
    Cooperative scheduler for the agent's periodic work.

    `on_report` runs every `report_interval` seconds. `on_update_check` runs
    once at startup and then every `update_interval` seconds; it returns
    True when an update was installed and the process should exit.

    A tick whose kind is already waiting in the queue is dropped, so a slow
    cycle delays the other timer by at most one run instead of building up
    a backlog.
    """

    def __init__(
        self,
        report_interval: float,
        on_report: Callable[[], Awaitable[None]],
        on_update_check: Callable[[], Awaitable[bool]],
        update_interval: float = UPDATE_CHECK_INTERVAL,
    ):
        self.report_interval = report_interval
        self.update_interval = update_interval
        self.on_report = on_report
        self.on_update_check = on_update_check

        self._queue: Optional[asyncio.Queue] = None
        self._pending: set[TaskKind] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> bool:
        """
        Run until stopped or until an update has been installed.

        Returns True if the loop ended because of a successful self-update.
        """
        self._queue = asyncio.Queue()
        self._pending.clear()
        self._running = True

        # Check right away so a freshly restarted agent updates promptly.
        # Timers start alongside it, so a slow first check does not push
        # back the report cadence.
        self._enqueue(TaskKind.UPDATE_CHECK)

        timers = [
            asyncio.create_task(self._timer(TaskKind.REPORT, self.report_interval)),
            asyncio.create_task(self._timer(TaskKind.UPDATE_CHECK, self.update_interval)),
        ]

        try:
            while self._running:
                kind = await self._queue.get()
                if kind is None:
                    break
                self._pending.discard(kind)

                if kind is TaskKind.REPORT:
                    await self._run_report()
                elif await self._run_update_check():
                    return True
        finally:
            self._running = False
            for task in timers:
                task.cancel()
            await asyncio.gather(*timers, return_exceptions=True)

        return False

    def stop(self) -> None:
        """Ask the loop to exit once the current cycle finishes."""
        self._running = False
        if self._queue is not None:
            self._queue.put_nowait(None)

    def _enqueue(self, kind: TaskKind) -> None:
        """Queue `kind` unless one is already waiting."""
        if kind not in self._pending:
            self._pending.add(kind)
            self._queue.put_nowait(kind)

    async def _timer(self, kind: TaskKind, interval: float) -> None:
        """Enqueue `kind` every `interval` seconds on a fixed-rate schedule."""
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + interval

        while True:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            self._enqueue(kind)

            # Missed ticks are skipped, not replayed
            now = loop.time()
            next_fire += interval
            while next_fire <= now:
                next_fire += interval

    async def _run_report(self) -> None:
        try:
            await self.on_report()
        except Exception as e:
            logger.exception(f"Report cycle error: {e}")

    async def _run_update_check(self) -> bool:
        try:
            return bool(await self.on_update_check())
        except Exception as e:
            logger.exception(f"Update check cycle error: {e}")
            return False
