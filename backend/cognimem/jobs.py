"""
Background Job Queue

Bounded in-process queue drained by a fixed pool of asyncio workers.
Memory extraction runs here so the HTTP caller gets its response at once;
a job's failure is logged and counted, never returned to that caller.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import settings
from .errors import ConflictError, UpstreamError

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[object]]


class QueueFullError(ConflictError):
    """The job queue is at capacity; the caller should retry later."""


@dataclass
class Job:
    """A named unit of background work. `factory` builds a fresh coroutine per attempt."""
    name: str
    factory: JobFactory
    max_attempts: Optional[int] = None
    submitted_at: Optional[str] = None

    def __post_init__(self):
        if self.submitted_at is None:
            self.submitted_at = datetime.utcnow().isoformat()


@dataclass
class JobStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0


@dataclass
class _Worker:
    index: int
    task: Optional[asyncio.Task] = field(default=None)


class JobQueue:
    """
    Fixed worker pool over an asyncio.Queue.

    Usage:
        queue = JobQueue(workers=2, maxsize=100, max_attempts=2)
        await queue.start()
        queue.submit("extract:msg-1", lambda: pipeline.run(...))
        await queue.join()
        await queue.stop()
    """

    def __init__(
        self,
        workers: int = 2,
        maxsize: int = 100,
        max_attempts: int = 2,
        backoff_max: float = 10.0,
    ):
        self.worker_count = workers
        self.max_attempts = max_attempts
        self.backoff_max = backoff_max
        self.stats = JobStats()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._workers: List[_Worker] = []
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Spawn the workers; starting twice is a no-op."""
        async with self._lock:
            if self._workers:
                return
            for i in range(self.worker_count):
                worker = _Worker(index=i)
                worker.task = asyncio.create_task(self._work(worker), name=f"job-worker-{i}")
                self._workers.append(worker)
        logger.info(f"Job queue started with {self.worker_count} workers")

    def submit(
        self,
        name: str,
        factory: JobFactory,
        max_attempts: Optional[int] = None,
    ) -> Job:
        """
        Enqueue a job without waiting for it. `max_attempts` overrides the
        queue default for this job.

        Raises:
            QueueFullError: when the queue is at capacity
        """
        job = Job(name=name, factory=factory, max_attempts=max_attempts)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            raise QueueFullError(f"Job queue full ({self._queue.maxsize}); rejected {name}")
        self.stats.submitted += 1
        logger.debug(f"Queued job {name} ({self.pending} pending)")
        return job

    async def join(self) -> None:
        """Wait until every submitted job has finished (or given up)."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers. Jobs still queued are dropped."""
        async with self._lock:
            workers, self._workers = self._workers, []
        for worker in workers:
            worker.task.cancel()
        for worker in workers:
            try:
                await worker.task
            except asyncio.CancelledError:
                pass
        if workers:
            logger.info(f"Job queue stopped ({self.pending} jobs dropped)")

    async def _work(self, worker: _Worker) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: Job) -> None:
        attempt = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(job.max_attempts or self.max_attempts),
            wait=wait_exponential(
                multiplier=0.5, min=min(0.5, self.backoff_max), max=self.backoff_max
            ),
            retry=retry_if_exception_type(UpstreamError),
        )
        try:
            async for attempt_state in retrying:
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    if attempt > 1:
                        self.stats.retried += 1
                        logger.warning(f"Retrying job {job.name} (attempt {attempt})")
                    await job.factory()
        except RetryError as e:
            self.stats.failed += 1
            logger.error(
                f"Job {job.name} failed after {attempt} attempts: "
                f"{e.last_attempt.exception()}"
            )
            return
        except Exception as e:
            self.stats.failed += 1
            logger.exception(f"Job {job.name} failed on attempt {attempt}: {e}")
            return

        self.stats.completed += 1
        logger.debug(f"Job {job.name} completed")


# Global queue instance
_job_queue: Optional[JobQueue] = None


def get_job_queue() -> JobQueue:
    """Get or create the global job queue (also a FastAPI dependency)."""
    global _job_queue
    if _job_queue is None:
        _job_queue = JobQueue(
            workers=settings.job_workers,
            maxsize=settings.job_queue_size,
            max_attempts=settings.job_max_attempts,
            backoff_max=settings.job_backoff_max,
        )
    return _job_queue
