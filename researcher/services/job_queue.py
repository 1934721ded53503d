"""Job queues that run research jobs with retry and exponential backoff.

Each attempt is handed to a handler (the research processor). A handler
that raises on a non-final attempt gets the job rescheduled after the
backoff delay; a failure on the final attempt leaves the job in the failed
state for inspection. Completed jobs are discarded.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol
from uuid import uuid4

from arq import Retry, create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.worker import Worker, func

from researcher.models.research import JobState, ResearchJob
from researcher.services import logger as log_service

JobHandler = Callable[[ResearchJob], Awaitable[Any]]

ARQ_FUNCTION_NAME = "run_research_job"


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt that follows `attempt` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))

    def schedule(self) -> tuple[float, ...]:
        return tuple(self.delay_for(a) for a in range(1, self.attempts))


class JobQueue(Protocol):
    async def enqueue(self, task_id: str, query: str) -> ResearchJob: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...


def _new_job(task_id: str, query: str, policy: RetryPolicy, job_id: str | None = None) -> ResearchJob:
    return ResearchJob(
        id=job_id or uuid4().hex,
        task_id=task_id,
        query=query,
        max_attempts=policy.attempts,
        backoff_schedule=policy.schedule(),
    )


def _log_attempt_failure(job: ResearchJob, exc: BaseException, *, retry_in: float | None) -> None:
    if retry_in is None:
        log_service.log_event(
            event_type="job_failed",
            message="Research job exhausted its attempts",
            level=logging.ERROR,
            job_id=job.id,
            task_id=job.task_id,
            attempts=job.attempt,
            error=str(exc),
        )
    else:
        log_service.log_event(
            event_type="job_retry_scheduled",
            message="Research job attempt failed; retrying",
            level=logging.WARNING,
            job_id=job.id,
            task_id=job.task_id,
            attempt=job.attempt,
            retry_in_seconds=retry_in,
            error=str(exc),
        )


class InMemoryJobQueue:
    """asyncio worker pool over a process-local queue."""

    def __init__(
        self,
        handler: JobHandler,
        *,
        policy: RetryPolicy | None = None,
        concurrency: int = 4,
    ):
        self._handler = handler
        self.policy = policy or RetryPolicy()
        self.concurrency = max(concurrency, 1)
        self._queue: asyncio.Queue[ResearchJob] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._delayed: set[asyncio.Task[None]] = set()
        self.active_jobs: dict[str, ResearchJob] = {}
        self.failed_jobs: dict[str, ResearchJob] = {}

    async def enqueue(self, task_id: str, query: str) -> ResearchJob:
        job = _new_job(task_id, query, self.policy)
        self.active_jobs[job.id] = job
        await self._queue.put(job)
        log_service.log_event(
            event_type="job_enqueued",
            message="Research job queued",
            job_id=job.id,
            task_id=task_id,
        )
        return job

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"research-worker-{i}")
            for i in range(self.concurrency)
        ]

    async def stop(self) -> None:
        for task in [*self._workers, *self._delayed]:
            task.cancel()
        await asyncio.gather(*self._workers, *self._delayed, return_exceptions=True)
        self._workers = []
        self._delayed.clear()

    async def join(self) -> None:
        """Wait until no job is queued, running, or waiting out a backoff."""
        while True:
            await self._queue.join()
            if not self._delayed:
                return
            await asyncio.gather(*list(self._delayed), return_exceptions=True)

    async def _work(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run_attempt(job)
            finally:
                self._queue.task_done()

    async def _run_attempt(self, job: ResearchJob) -> None:
        job.attempt += 1
        job.state = JobState.ACTIVE
        try:
            await self._handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            job.last_error = str(exc)
            delay = job.retry_delay
            if delay is None:
                job.state = JobState.FAILED
                self.active_jobs.pop(job.id, None)
                self.failed_jobs[job.id] = job
                _log_attempt_failure(job, exc, retry_in=None)
                return
            job.state = JobState.DELAYED
            _log_attempt_failure(job, exc, retry_in=delay)
            # Registered before task_done() so join() keeps waiting for it.
            delayed = asyncio.create_task(self._requeue_after(job, delay))
            self._delayed.add(delayed)
            delayed.add_done_callback(self._delayed.discard)
            return

        job.state = JobState.COMPLETED
        self.active_jobs.pop(job.id, None)

    async def _requeue_after(self, job: ResearchJob, delay: float) -> None:
        await asyncio.sleep(delay)
        job.state = JobState.WAITING
        await self._queue.put(job)


# --- arq (Redis) ---


async def run_research_job(ctx: dict[str, Any], task_id: str, query: str) -> dict[str, str]:
    """arq entrypoint: one attempt of one research job."""
    policy: RetryPolicy = ctx["policy"]
    handler: JobHandler = ctx["handler"]
    job = _new_job(task_id, query, policy, job_id=ctx.get("job_id"))
    job.attempt = ctx.get("job_try", 1)
    job.state = JobState.ACTIVE
    try:
        await handler(job)
    except Exception as exc:
        delay = job.retry_delay
        if delay is None:
            _log_attempt_failure(job, exc, retry_in=None)
            raise
        _log_attempt_failure(job, exc, retry_in=delay)
        raise Retry(defer=delay) from exc
    return {"task_id": task_id, "status": "complete"}


class ArqJobQueue:
    """Redis-backed queue; the arq worker runs embedded in this process."""

    def __init__(
        self,
        handler: JobHandler,
        *,
        redis_url: str,
        policy: RetryPolicy | None = None,
        concurrency: int = 4,
        keep_result_seconds: int = 7 * 24 * 3600,
    ):
        self._handler = handler
        self.policy = policy or RetryPolicy()
        self.concurrency = max(concurrency, 1)
        self.redis_settings = RedisSettings.from_dsn(redis_url)
        self.keep_result_seconds = keep_result_seconds
        self._pool: ArqRedis | None = None
        self._worker: Worker | None = None
        self._worker_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._worker is not None:
            return
        self._pool = await create_pool(self.redis_settings)
        self._worker = Worker(
            functions=[
                func(
                    run_research_job,
                    name=ARQ_FUNCTION_NAME,
                    max_tries=self.policy.attempts,
                    keep_result=self.keep_result_seconds,
                )
            ],
            redis_pool=self._pool,
            ctx={"handler": self._handler, "policy": self.policy},
            max_jobs=self.concurrency,
            handle_signals=False,
        )
        self._worker_task = asyncio.create_task(self._worker.async_run())
        log_service.log_event(
            event_type="queue_started",
            message="arq worker started",
            redis=f"{self.redis_settings.host}:{self.redis_settings.port}",
        )

    async def stop(self) -> None:
        if self._worker_task is not None:
            self._worker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker_task
            self._worker_task = None
        if self._worker is not None:
            # Worker.close() also closes the shared redis pool.
            await self._worker.close()
            self._worker = None
            self._pool = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def enqueue(self, task_id: str, query: str) -> ResearchJob:
        if self._pool is None:
            raise RuntimeError("Job queue not started - call start() first")
        arq_job = await self._pool.enqueue_job(
            ARQ_FUNCTION_NAME,
            task_id,
            query,
            _job_id=f"research:{task_id}",
        )
        if arq_job is None:
            raise RuntimeError(f"A job for task {task_id} is already queued")
        log_service.log_event(
            event_type="job_enqueued",
            message="Research job queued",
            job_id=arq_job.job_id,
            task_id=task_id,
        )
        return _new_job(task_id, query, self.policy, job_id=arq_job.job_id)
