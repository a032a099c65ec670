import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class PeriodicSweeper:
    """Runs housekeeping jobs on an interval in a background task."""

    def __init__(self, interval: float, jobs: List[Job]):
        self.interval = interval
        self.jobs = list(jobs)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="idp-sweeper")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self):
        for job in self.jobs:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("sweep job %s failed", getattr(job, "__name__", job))

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
