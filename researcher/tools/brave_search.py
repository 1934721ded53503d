from __future__ import annotations

from typing import Any

import httpx

from researcher.config import settings
from researcher.models.research import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


async def search(query: str, *, max_results: int = 5) -> list[SearchResult]:
    """Execute a Brave web search and normalize results."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    params: dict[str, Any] = {"q": query, "count": max_results}

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": settings.brave_api_key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    raw_results = payload.get("web", {}).get("results", [])[:max_results]
    total = max(len(raw_results), 1)
    mapped: list[SearchResult] = []
    for idx, item in enumerate(raw_results):
        snippets = item.get("extra_snippets", []) or []
        description = (item.get("description", "") or "").strip()
        # Brave returns no relevance score; rank position stands in for one.
        mapped.append(
            SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                content=description or " ".join(snippets).strip(),
                snippet=snippets[0] if snippets else None,
                score=max(0.0, 1.0 - (idx / total)),
            )
        )
    return mapped
