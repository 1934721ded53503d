from __future__ import annotations

import logging
from dataclasses import dataclass

from researcher.config import settings
from researcher.errors import UpstreamFailure
from researcher.models.research import SearchResult
from researcher.services import logger as log_service
from researcher.tools import brave_search, tavily_search


@dataclass
class SearchResponse:
    results: list[SearchResult]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 5,
) -> SearchResponse:
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily

    if provider == "tavily":
        results = await tavily_search.search(
            query=query,
            search_depth=search_depth,
            max_results=max_results,
        )
        return SearchResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(query=query, max_results=max_results)
        except Exception as e:
            if not use_fallback:
                raise
            fallback_reason = str(e)
        else:
            if results or not use_fallback:
                return SearchResponse(results=results, provider="brave")
            fallback_reason = "brave returned zero results"

        fallback_results = await tavily_search.search(
            query=query,
            search_depth=search_depth,
            max_results=max_results,
        )
        return SearchResponse(
            results=fallback_results,
            provider="tavily",
            fallback_from="brave",
            fallback_reason=fallback_reason,
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


async def search_results(query: str, limit: int) -> list[SearchResult]:
    """Search capability consumed by the aggregator: ordered results, at most `limit`."""
    try:
        response = await search(
            query,
            search_depth=settings.search_depth,
            max_results=limit,
        )
    except ValueError:
        raise
    except Exception as e:
        raise UpstreamFailure(f"Search provider error: {e}") from e
    if response.fallback_from:
        log_service.log_event(
            event_type="search_fallback",
            message=f"Search fell back from {response.fallback_from} to {response.provider}",
            level=logging.WARNING,
            query=query[:100],
            provider=response.provider,
            fallback_from=response.fallback_from,
            reason=response.fallback_reason,
        )
    return response.results[:limit]
