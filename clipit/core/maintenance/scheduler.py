"""
In-process interval scheduler for maintenance jobs.

Each started job runs in its own asyncio task that sleeps until
``next_run_at``, runs the job and reschedules itself. A failing run is
logged and the loop continues. The scheduler is owned by the application
(``app.state.scheduler``) rather than living at module level.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobSpec:
    name: str
    interval_seconds: float
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")


class Scheduler:
    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._jobs: Dict[str, JobSpec] = {}
        self._funcs: Dict[str, JobFunc] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def register(self, job: JobSpec, func: JobFunc) -> JobSpec:
        if job.name in self._jobs:
            raise ValueError(f"Job {job.name!r} is already registered")
        self._jobs[job.name] = job
        self._funcs[job.name] = func
        logger.info("Registered job %s (every %ss)", job.name, job.interval_seconds)
        return job

    def get(self, name: str) -> JobSpec:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"Unknown job: {name}") from None

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def start(self, name: str) -> bool:
        """Start the job loop. Returns False if it was already running."""
        job = self.get(name)
        if self.is_running(name):
            logger.info("Job %s is already running", name)
            return False
        job.next_run_at = self._clock() + timedelta(seconds=job.interval_seconds)
        self._tasks[name] = asyncio.create_task(self._loop(job), name=f"job:{name}")
        logger.info("Job %s scheduled, next run at %s", name, job.next_run_at.isoformat())
        return True

    async def stop(self, name: str) -> bool:
        """Stop the job loop. Returns False if it was not running."""
        job = self.get(name)
        task = self._tasks.pop(name, None)
        job.next_run_at = None
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Job %s stopped", name)
        return True

    async def run_now(self, name: str) -> Any:
        """Run the job once immediately; errors propagate to the caller."""
        job = self.get(name)
        try:
            return await self._funcs[name]()
        finally:
            self._mark_ran(job)

    def status(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": job.name,
                "running": self.is_running(job.name),
                "interval_seconds": job.interval_seconds,
                "last_run_at": job.last_run_at,
                "next_run_at": job.next_run_at,
                "last_error": job.last_error,
                "run_count": job.run_count,
            }
            for job in self._jobs.values()
        ]

    async def shutdown(self) -> None:
        for name in list(self._tasks):
            await self.stop(name)

    def _mark_ran(self, job: JobSpec) -> None:
        job.last_run_at = self._clock()
        job.run_count += 1
        if self.is_running(job.name):
            job.next_run_at = job.last_run_at + timedelta(seconds=job.interval_seconds)

    def _seconds_until(self, when: Optional[datetime]) -> float:
        if when is None:
            return 0.0
        return max(0.0, (when - self._clock()).total_seconds())

    async def _loop(self, job: JobSpec) -> None:
        func = self._funcs[job.name]
        while True:
            await asyncio.sleep(self._seconds_until(job.next_run_at))
            logger.info("Running scheduled job %s", job.name)
            try:
                await func()
                job.last_error = None
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                job.last_error = str(exc) or exc.__class__.__name__
                logger.exception("Scheduled job %s failed", job.name)
            self._mark_ran(job)
