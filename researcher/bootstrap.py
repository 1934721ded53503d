"""Explicit wiring of the research components.

Every component receives its collaborators through its constructor; this
module is the only place that picks concrete implementations from settings.
"""
from __future__ import annotations

from dataclasses import dataclass

from researcher.agents.pipeline import AgentPipeline
from researcher.config import Settings
from researcher.llm_client import OpenRouterTextGenerator, TextGenerator
from researcher.services.broadcaster import (
    InProcessBroadcaster,
    ProgressBroadcaster,
    RedisBroadcaster,
)
from researcher.services.database import PostgresTaskStore
from researcher.services.job_queue import ArqJobQueue, InMemoryJobQueue, JobQueue, RetryPolicy
from researcher.services.orchestrator import TaskOrchestrator
from researcher.services.processor import ResearchProcessor
from researcher.services.search_aggregator import SearchAggregator, SearchFn
from researcher.services.task_store import InMemoryTaskStore, TaskStore
from researcher.tools import search_provider


@dataclass
class Components:
    store: TaskStore
    broadcaster: ProgressBroadcaster
    pipeline: AgentPipeline
    processor: ResearchProcessor
    queue: JobQueue
    orchestrator: TaskOrchestrator

    async def start(self) -> None:
        if isinstance(self.store, PostgresTaskStore):
            await self.store.ensure_schema()
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()
        await self.broadcaster.close()
        await self.store.close()


def build_store(settings: Settings) -> TaskStore:
    backend = settings.store_backend.lower().strip()
    if backend == "memory":
        return InMemoryTaskStore()
    if backend == "postgres":
        return PostgresTaskStore(settings.database_url)
    raise ValueError(f"Unsupported STORE_BACKEND: {settings.store_backend}")


def build_broadcaster(settings: Settings) -> ProgressBroadcaster:
    backend = settings.broadcast_backend.lower().strip()
    if backend == "memory":
        return InProcessBroadcaster()
    if backend == "redis":
        return RedisBroadcaster(settings.redis_url)
    raise ValueError(f"Unsupported BROADCAST_BACKEND: {settings.broadcast_backend}")


def build_pipeline(
    settings: Settings,
    *,
    generator: TextGenerator | None = None,
    search: SearchFn | None = None,
) -> AgentPipeline:
    return AgentPipeline(
        generator or OpenRouterTextGenerator(),
        SearchAggregator(search or search_provider.search_results),
        results_per_query=settings.search_per_query_limit,
    )


def build_components(
    settings: Settings,
    *,
    generator: TextGenerator | None = None,
    search: SearchFn | None = None,
    store: TaskStore | None = None,
    broadcaster: ProgressBroadcaster | None = None,
) -> Components:
    store = store or build_store(settings)
    broadcaster = broadcaster or build_broadcaster(settings)
    pipeline = build_pipeline(settings, generator=generator, search=search)
    processor = ResearchProcessor(store, pipeline, broadcaster)

    policy = RetryPolicy(
        attempts=settings.queue_attempts,
        backoff_seconds=settings.queue_backoff_seconds,
    )
    backend = settings.queue_backend.lower().strip()
    queue: JobQueue
    if backend == "memory":
        queue = InMemoryJobQueue(
            processor.process, policy=policy, concurrency=settings.queue_concurrency
        )
    elif backend == "arq":
        queue = ArqJobQueue(
            processor.process,
            redis_url=settings.redis_url,
            policy=policy,
            concurrency=settings.queue_concurrency,
        )
    else:
        raise ValueError(f"Unsupported QUEUE_BACKEND: {settings.queue_backend}")

    return Components(
        store=store,
        broadcaster=broadcaster,
        pipeline=pipeline,
        processor=processor,
        queue=queue,
        orchestrator=TaskOrchestrator(store, queue),
    )
