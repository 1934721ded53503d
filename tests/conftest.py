from __future__ import annotations

from typing import Callable

import pytest

from researcher.models.research import SearchResult

PLAN_TEXT = (
    "We need recent adoption data and the main trade-offs.\n"
    "- solid state battery adoption 2025\n"
    "- solid state battery manufacturing challenges\n"
)

ANALYSIS_TEXT = (
    "Solid state batteries are moving from pilot lines toward limited production runs.\n\n"
    "1. Manufacturing cost remains the main obstacle\n"
    "Yields on ceramic electrolytes are still low and scrap rates drive up per-cell cost.\n\n"
    "2. Automakers are hedging their bets\n"
    "Several manufacturers announced partnerships while keeping lithium-ion roadmaps intact."
)


def make_result(url: str, title: str | None = None, content: str = "content") -> SearchResult:
    return SearchResult(title=title or f"title {url}", url=url, content=content, score=0.5)


class FakeGenerator:
    """Returns canned replies in order and records every prompt."""

    def __init__(self, *replies: str, error: Exception | None = None):
        self.replies = list(replies)
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


class FakeSearch:
    """Maps query -> results; raises for queries listed in `failing`."""

    def __init__(self, results: dict[str, list[SearchResult]] | None = None, failing: set[str] | None = None):
        self.results = results or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, int]] = []

    async def __call__(self, query: str, limit: int) -> list[SearchResult]:
        self.calls.append((query, limit))
        if query in self.failing:
            raise RuntimeError(f"provider down for {query}")
        return list(self.results.get(query, []))


@pytest.fixture
def generator_factory() -> Callable[..., FakeGenerator]:
    return FakeGenerator


@pytest.fixture
def default_search() -> FakeSearch:
    return FakeSearch(
        {
            "solid state battery adoption 2025": [
                make_result("https://a.example/1", "Adoption report"),
                make_result("https://b.example/2", "Market outlook"),
            ],
            "solid state battery manufacturing challenges": [
                make_result("https://b.example/2", "Market outlook (dup)"),
                make_result("https://c.example/3", "Manufacturing yields"),
            ],
        }
    )
