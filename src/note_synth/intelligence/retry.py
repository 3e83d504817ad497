"""Background retry queue for failed impact estimations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from note_synth.models.scoring import ImpactEstimate

logger = logging.getLogger(__name__)

RETRY_DELAYS_SECONDS = [1.0, 2.0, 4.0]
DEFAULT_MAX_ATTEMPTS = 3

EstimateFn = Callable[[], Awaitable[ImpactEstimate | None]]
SuccessFn = Callable[[ImpactEstimate], Awaitable[None]]
FailureFn = Callable[[BaseException, int, str | None], Awaitable[None]]


class RetryStatus(Enum):
    """Lifecycle of a retry job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryJob:
    """One queued re-estimation."""

    key: str
    task_id: str
    estimate_fn: EstimateFn
    on_success: SuccessFn
    on_failure: FailureFn | None = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    cache_key: str = ""
    attempts: int = 0
    status: RetryStatus = RetryStatus.PENDING
    last_error: str | None = None
    cancelled: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Status snapshot entry."""
        return {
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "max_attempts": self.max_attempts,
            "updated_at": self.updated_at.isoformat(),
        }


class RetryQueue:
    """Retries failed estimations in the background with backoff.

    Jobs are keyed by session and task id; enqueueing a key that is already
    queued is a no-op. Successful estimates are cached by ``cache_key`` so a
    later enqueue for the same key resolves immediately.
    """

    def __init__(self, delays: list[float] | None = None) -> None:
        """Initialize the queue.

        Args:
            delays: Wait before each attempt, in seconds
        """
        self.delays = list(RETRY_DELAYS_SECONDS if delays is None else delays)
        self._jobs: dict[str, RetryJob] = {}
        self._runners: set[asyncio.Task] = set()
        self._completed: dict[str, ImpactEstimate] = {}

    @staticmethod
    def job_key(task_id: str, session_id: str | None = None) -> str:
        """Queue key for a task within an optional session."""
        return f"{session_id}:{task_id}" if session_id else task_id

    def enqueue(
        self,
        task_id: str,
        estimate_fn: EstimateFn,
        on_success: SuccessFn,
        on_failure: FailureFn | None = None,
        session_id: str | None = None,
        cache_key: str | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> bool:
        """Schedule a retry job on the running event loop.

        Args:
            task_id: Task being estimated
            estimate_fn: Coroutine factory producing the estimate
            on_success: Called with the estimate once it succeeds
            on_failure: Called with (error, attempts, last_error) when exhausted
            session_id: Optional scope for deduplication
            cache_key: Key for reusing completed estimates (defaults to task_id)
            max_attempts: Attempt cap

        Returns:
            True if a new job or cached success was scheduled, False if deduplicated
        """
        key = self.job_key(task_id, session_id)
        if key in self._jobs:
            logger.debug(f"Retry job already queued for {key}")
            return False

        cache_key = cache_key or task_id
        cached = self._completed.get(cache_key)
        if cached is not None:
            logger.debug(f"Reusing cached estimate for {cache_key}")
            self._spawn(on_success(cached))
            return True

        job = RetryJob(
            key=key,
            task_id=task_id,
            estimate_fn=estimate_fn,
            on_success=on_success,
            on_failure=on_failure,
            max_attempts=max_attempts,
            cache_key=cache_key,
        )
        self._jobs[key] = job
        self._spawn(self._run(job))
        logger.info(f"Queued impact retry for task {task_id}")
        return True

    def _spawn(self, coro: Awaitable[Any]) -> None:
        runner = asyncio.ensure_future(coro)
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)

    async def _run(self, job: RetryJob) -> None:
        try:
            while not job.cancelled and job.attempts < job.max_attempts:
                delay = self.delays[min(job.attempts, len(self.delays) - 1)] if self.delays else 0
                if delay > 0:
                    await asyncio.sleep(delay)
                if job.cancelled:
                    break

                job.status = RetryStatus.IN_PROGRESS
                job.attempts += 1
                job.updated_at = datetime.now()

                try:
                    estimate = await job.estimate_fn()
                    if estimate is None:
                        raise RuntimeError("Impact estimate unavailable")
                    if job.cancelled:
                        break
                    await job.on_success(estimate)
                except Exception as e:
                    job.last_error = str(e) or type(e).__name__
                    job.updated_at = datetime.now()
                    if job.attempts >= job.max_attempts:
                        job.status = RetryStatus.FAILED
                        logger.warning(
                            f"Retry exhausted for task {job.task_id} after "
                            f"{job.attempts} attempts: {job.last_error}"
                        )
                        if job.on_failure and not job.cancelled:
                            await job.on_failure(e, job.attempts, job.last_error)
                        return
                    job.status = RetryStatus.PENDING
                    logger.debug(f"Retry attempt {job.attempts} failed for {job.task_id}: {e}")
                    continue

                self._completed[job.cache_key] = estimate
                job.status = RetryStatus.COMPLETED
                job.updated_at = datetime.now()
                logger.info(f"Retry succeeded for task {job.task_id} on attempt {job.attempts}")
                return
        finally:
            self._jobs.pop(job.key, None)

    def status(self, session_id: str | None = None) -> dict[str, dict[str, Any]]:
        """Snapshot of queued jobs keyed by task id."""
        prefix = f"{session_id}:" if session_id else None
        return {
            job.task_id: job.to_dict()
            for job in self._jobs.values()
            if prefix is None or job.key.startswith(prefix)
        }

    @property
    def pending_count(self) -> int:
        """Number of jobs still queued or running."""
        return len(self._jobs)

    def clear(self, session_id: str | None = None, clear_cache: bool = False) -> None:
        """Cancel queued jobs, optionally only within one session."""
        prefix = f"{session_id}:" if session_id else None
        for key in list(self._jobs):
            if prefix is None or key.startswith(prefix):
                self._jobs.pop(key).cancelled = True
        if clear_cache:
            self._completed.clear()

    async def wait_idle(self) -> None:
        """Wait for every running job and callback to finish."""
        while self._runners:
            await asyncio.gather(*list(self._runners), return_exceptions=True)
