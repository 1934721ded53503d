"""Researcher - queued web research

Simple CLI for running one research query in-process.
"""

import argparse
import asyncio

from researcher.bootstrap import build_pipeline
from researcher.config import settings
from researcher.errors import PipelineFailed, QueryValidationError
from researcher.services import streaming
from researcher.services.orchestrator import validate_query


async def run_research(query: str) -> int:
    """Run the pipeline once and print stage messages and the report."""
    try:
        validate_query(query)
    except QueryValidationError as e:
        print(f"[!] Invalid query: {e}")
        return 2

    print(f"Research query: {query}")
    print("-" * 50)

    pipeline = build_pipeline(settings)

    async def on_progress(step: str) -> None:
        print(f"[~] {streaming.step_message(step)}")

    try:
        state = await pipeline.execute(query, on_progress)
    except PipelineFailed as e:
        print(f"\n[!] Error: {e}")
        return 1

    print(f"\n[*] Research Complete!")
    print(f"   Runtime: {state.elapsed_seconds():.1f}s")
    print(f"   Search queries: {len(state.search_queries)}")
    print(f"   Sources: {len(state.search_results)}")
    print(f"\n{'='*50}")
    print("REPORT:")
    print(f"{'='*50}")
    print(state.report)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Researcher CLI")
    parser.add_argument("--query", "-q", required=True, help="Research query")

    args = parser.parse_args()

    raise SystemExit(asyncio.run(run_research(args.query)))


if __name__ == "__main__":
    main()
