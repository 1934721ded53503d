from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from researcher.config import settings
from researcher.models.research import SearchResult


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 5,
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
) -> list[SearchResult]:
    """Execute a Tavily web search and return structured results."""
    client = AsyncTavilyClient(api_key=settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
    }
    if include_domains:
        kwargs["include_domains"] = include_domains
    if exclude_domains:
        kwargs["exclude_domains"] = exclude_domains

    response = await client.search(**kwargs)

    return [
        SearchResult(
            title=r.get("title", ""),
            url=r.get("url", ""),
            content=r.get("content", ""),
            snippet=r.get("snippet"),
            score=r.get("score"),
        )
        for r in response.get("results", [])
    ]
