from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

from researcher.errors import SearchFailed
from researcher.models.research import SearchResult
from researcher.services import logger as log_service

SearchFn = Callable[[str, int], Awaitable[list[SearchResult]]]


def dedupe_by_url(batches: Sequence[Sequence[SearchResult]]) -> list[SearchResult]:
    """Merge result batches keeping the first occurrence of each URL."""
    by_url: dict[str, SearchResult] = {}
    for batch in batches:
        for result in batch:
            if result.url not in by_url:
                by_url[result.url] = result
    return list(by_url.values())


class SearchAggregator:
    """Fans queries out to the search capability concurrently and merges the results.

    A failing query fails the whole aggregation; partial result sets are
    never returned.
    """

    def __init__(self, search: SearchFn):
        self._search = search

    async def search_multiple(
        self, queries: Sequence[str], per_query_limit: int = 3
    ) -> list[SearchResult]:
        if per_query_limit <= 0:
            raise ValueError("per_query_limit must be positive")
        if not queries:
            return []

        async def run_query(query: str) -> list[SearchResult]:
            try:
                results = await self._search(query, per_query_limit)
            except Exception as e:
                raise SearchFailed(query, e) from e
            return list(results)[:per_query_limit]

        tasks = [asyncio.create_task(run_query(q)) for q in queries]
        try:
            batches = await asyncio.gather(*tasks)
        except SearchFailed as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log_service.log_event(
                event_type="search_failed",
                message="Search aggregation failed",
                query=e.query,
                error=str(e.cause),
            )
            raise

        merged = dedupe_by_url(batches)
        log_service.log_event(
            event_type="search_aggregated",
            message=f"Merged {sum(len(b) for b in batches)} results into {len(merged)} sources",
            queries=len(queries),
        )
        return merged
