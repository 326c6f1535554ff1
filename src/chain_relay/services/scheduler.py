"""Base class for the relay's timer-driven background tasks."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs `run_once` every `interval` seconds on a single owned asyncio task.

    `start()` and `stop()` are idempotent. `stop()` lets an in-flight run finish
    before returning; the wait between runs is interrupted immediately.
    """

    name = "periodic-task"

    def __init__(self, interval: float, *, run_immediately: bool = True) -> None:
        self.interval = max(0.01, float(interval))
        self.run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop."""
        if self.running:
            logger.debug("%s already running", self.name)
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        """Stop the background loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def run_once(self) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        if not self.run_immediately and await self._wait_interval():
            return

        while not self._stopping.is_set():
            try:
                await self.run_once()
            except SQLAlchemyError as e:
                logger.error("%s store error: %s", self.name, e, exc_info=True)
            except (OSError, ValueError, TypeError, LookupError, AttributeError) as e:
                logger.error("%s run failed: %s", self.name, e, exc_info=True)

            if await self._wait_interval():
                return

    async def _wait_interval(self) -> bool:
        """Sleep one interval; return True when stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
        except TimeoutError:
            return False
        return True
