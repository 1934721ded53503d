from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from arq import Retry

from conftest import ANALYSIS_TEXT, PLAN_TEXT, FakeGenerator
from researcher.agents.pipeline import AgentPipeline
from researcher.errors import UpstreamFailure
from researcher.models.research import JobState, ResearchJob, TaskStatus
from researcher.services.broadcaster import InProcessBroadcaster
from researcher.services.job_queue import InMemoryJobQueue, RetryPolicy, run_research_job
from researcher.services.processor import ResearchProcessor
from researcher.services.search_aggregator import SearchAggregator
from researcher.services.task_store import InMemoryTaskStore


class FlakyGenerator:
    """Fails the first `failures` plan calls, then behaves."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self._replies = FakeGenerator(*([PLAN_TEXT, ANALYSIS_TEXT] * 3))

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise UpstreamFailure(f"attempt failure #{self.calls}")
        return await self._replies.generate(prompt)


def test_retry_policy_backoff_is_exponential():
    policy = RetryPolicy(attempts=3, backoff_seconds=2.0)

    assert policy.delay_for(1) == 2.0
    assert policy.delay_for(2) == 4.0
    assert policy.schedule() == (2.0, 4.0)


def test_job_retry_delay_follows_its_schedule():
    job = ResearchJob(id="j", task_id="t", query="q", max_attempts=3, backoff_schedule=(2.0, 4.0))

    delays = []
    for attempt in (1, 2, 3):
        job.attempt = attempt
        delays.append(job.retry_delay)

    assert delays == [2.0, 4.0, None]


async def _run(generator, search, *, attempts=3, store=None):
    store = store or InMemoryTaskStore()
    pipeline = AgentPipeline(generator, SearchAggregator(search))
    processor = ResearchProcessor(store, pipeline, InProcessBroadcaster())
    attempts_seen: list[int] = []

    async def handler(job):
        attempts_seen.append(job.attempt)
        return await processor.process(job)

    queue = InMemoryJobQueue(
        handler, policy=RetryPolicy(attempts=attempts, backoff_seconds=0.0), concurrency=2
    )
    task = await store.create_task("solid state batteries")
    await queue.start()
    try:
        job = await queue.enqueue(task.id, task.query)
        await queue.join()
    finally:
        await queue.stop()
    return store, queue, job, task, attempts_seen


@pytest.mark.asyncio
async def test_retry_exhaustion_marks_failed_with_last_error(default_search):
    generator = FlakyGenerator(failures=3)

    store, queue, job, task, attempts_seen = await _run(generator, default_search)

    assert attempts_seen == [1, 2, 3]
    stored = await store.get_task(task.id)
    assert stored.status == TaskStatus.FAILED
    assert stored.error == "plan stage failed: attempt failure #3"
    assert stored.report is None
    assert job.state == JobState.FAILED
    assert queue.failed_jobs == {job.id: job}
    assert job.last_error == stored.error


@pytest.mark.asyncio
async def test_retry_then_success_completes_and_discards_job(default_search):
    generator = FlakyGenerator(failures=1)

    store, queue, job, task, attempts_seen = await _run(generator, default_search)

    assert attempts_seen == [1, 2]
    stored = await store.get_task(task.id)
    assert stored.status == TaskStatus.COMPLETE
    assert stored.error is None
    assert stored.report
    assert job.state == JobState.COMPLETED
    assert queue.failed_jobs == {}
    assert queue.active_jobs == {}


@pytest.mark.asyncio
async def test_backoff_delays_follow_policy(monkeypatch):
    slept: list[float] = []

    async def fake_sleep(delay):
        slept.append(delay)

    monkeypatch.setattr("researcher.services.job_queue.asyncio.sleep", fake_sleep)

    async def always_fails(job):
        raise RuntimeError("nope")

    queue = InMemoryJobQueue(always_fails, policy=RetryPolicy(attempts=3, backoff_seconds=2.0))
    await queue.start()
    try:
        job = await queue.enqueue("task-1", "some query")
        await queue.join()
    finally:
        await queue.stop()

    assert slept == [2.0, 4.0]
    assert job.attempt == 3
    assert job.state == JobState.FAILED


@pytest.mark.asyncio
async def test_arq_entrypoint_defers_retry_on_intermediate_failure():
    handler = AsyncMock(side_effect=RuntimeError("flaky"))
    ctx = {"handler": handler, "policy": RetryPolicy(), "job_id": "research:t1", "job_try": 2}

    with pytest.raises(Retry) as exc_info:
        await run_research_job(ctx, "t1", "some query")

    assert exc_info.value.defer_score == 4000
    job = handler.await_args.args[0]
    assert job.attempt == 2
    assert not job.is_final_attempt


@pytest.mark.asyncio
async def test_arq_entrypoint_reraises_on_final_attempt():
    handler = AsyncMock(side_effect=RuntimeError("still broken"))
    ctx = {"handler": handler, "policy": RetryPolicy(), "job_id": "research:t1", "job_try": 3}

    with pytest.raises(RuntimeError, match="still broken"):
        await run_research_job(ctx, "t1", "some query")


@pytest.mark.asyncio
async def test_arq_entrypoint_returns_summary_on_success():
    handler = AsyncMock(return_value=None)
    ctx = {"handler": handler, "policy": RetryPolicy(), "job_id": "research:t1", "job_try": 1}

    assert await run_research_job(ctx, "t1", "some query") == {"task_id": "t1", "status": "complete"}


class FlakyCompletionStore(InMemoryTaskStore):
    def __init__(self) -> None:
        super().__init__()
        self.completion_calls = 0

    async def complete_task(self, task_id, sources, **fields):
        self.completion_calls += 1
        if self.completion_calls == 1:
            raise RuntimeError("db hiccup")
        return await super().complete_task(task_id, sources, **fields)


@pytest.mark.asyncio
async def test_retried_job_does_not_duplicate_sources(default_search):
    generator = FlakyGenerator(failures=0)

    store, queue, job, task, attempts_seen = await _run(
        generator, default_search, store=FlakyCompletionStore()
    )

    assert attempts_seen == [1, 2]
    stored = await store.get_task(task.id)
    assert stored.status == TaskStatus.COMPLETE
    urls = [s.url for s in await store.get_sources(task.id)]
    assert urls == ["https://a.example/1", "https://b.example/2", "https://c.example/3"]
    assert job.state == JobState.COMPLETED
