from __future__ import annotations

import time
from typing import Awaitable, Callable, Optional

from researcher.agents import report as report_builder
from researcher.errors import PipelineFailed
from researcher.llm_client import TextGenerator
from researcher.models.research import ResearchState
from researcher.services import logger as log_service
from researcher.services.prompt_store import render_prompt
from researcher.services.search_aggregator import SearchAggregator

ProgressCallback = Callable[[str], Awaitable[None]]

SEARCH_RESULTS_PER_QUERY = 3

# (progress signal sent when the stage starts, name recorded when it finishes)
STAGES: tuple[tuple[str, str], ...] = (
    ("planning", "plan"),
    ("searching", "search"),
    ("analyzing", "analyze"),
    ("generating", "generate"),
)


class AgentPipeline:
    """Runs plan -> search -> analyze -> report for one research query.

    Stages run strictly in order and none is retried here; retrying the whole
    execution is the job queue's responsibility.
    """

    def __init__(
        self,
        generator: TextGenerator,
        aggregator: SearchAggregator,
        *,
        results_per_query: int = SEARCH_RESULTS_PER_QUERY,
    ):
        self.generator = generator
        self.aggregator = aggregator
        self.results_per_query = results_per_query

    async def execute(
        self,
        query: str,
        on_progress: Optional[ProgressCallback] = None,
        *,
        task_id: str | None = None,
        job_id: str | None = None,
        attempt: int | None = None,
    ) -> ResearchState:
        state = ResearchState(query=query)
        handlers = {
            "plan": self._plan,
            "search": self._search,
            "analyze": self._analyze,
            "generate": self._generate,
        }

        for signal, stage in STAGES:
            t0 = time.monotonic()
            try:
                if on_progress is not None:
                    await on_progress(signal)
                await handlers[stage](state)
            except Exception as e:
                log_service.log_research_step(
                    task_id,
                    stage,
                    "failed",
                    job_id=job_id,
                    attempt=attempt,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    error=str(e),
                )
                raise PipelineFailed(stage, e) from e
            state.steps_completed.append(stage)
            log_service.log_research_step(
                task_id,
                stage,
                "completed",
                job_id=job_id,
                attempt=attempt,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

        state.end_time = time.time()
        return state

    async def _plan(self, state: ResearchState) -> None:
        state.plan = _require_text(
            await self.generator.generate(render_prompt("pipeline.plan", query=state.query)),
            "plan",
        )
        state.search_queries = report_builder.extract_search_queries(state.plan)

    async def _search(self, state: ResearchState) -> None:
        state.search_results = await self.aggregator.search_multiple(
            state.search_queries, self.results_per_query
        )

    async def _analyze(self, state: ResearchState) -> None:
        prompt = render_prompt(
            "pipeline.analyze",
            query=state.query,
            results=report_builder.format_results_for_analysis(state.search_results),
        )
        state.analysis = _require_text(await self.generator.generate(prompt), "analysis")
        state.findings = report_builder.extract_findings(state.analysis, state.search_results)

    async def _generate(self, state: ResearchState) -> None:
        state.report = report_builder.build_report(state)


def _require_text(value: object, what: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"Expected {what} text from the generator, got {type(value).__name__}")
    return value
