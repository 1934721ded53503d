"""Text transforms used by the research pipeline.

Plan parsing, finding extraction and report assembly are pure functions of
their inputs so they can be exercised without any upstream calls.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Sequence

from researcher.models.research import Finding, ResearchState, SearchResult

MAX_FINDINGS = 5
MIN_FINDING_BLOCK_CHARS = 50
FINDING_TITLE_CHARS = 100
FINDING_CONTENT_CHARS = 300
SOURCES_PER_FINDING = 2

_NUMBERING = re.compile(r"^\d+\.\s*")
_QUERY_MARKER = re.compile(r"^-\s*")


def extract_search_queries(plan: str) -> list[str]:
    """Every plan line starting with ``-`` becomes a search query."""
    queries: list[str] = []
    for line in plan.split("\n"):
        stripped = line.strip()
        if not stripped.startswith("-"):
            continue
        query = _QUERY_MARKER.sub("", stripped).strip()
        if query:
            queries.append(query)
    return queries


def split_blocks(text: str) -> list[str]:
    return text.split("\n\n")


def format_results_for_analysis(results: Sequence[SearchResult]) -> str:
    return "\n\n".join(f"Title: {r.title}\nContent: {r.content}" for r in results)


def extract_findings(analysis: str, sources: Sequence[SearchResult]) -> list[Finding]:
    """Turn the first few substantial analysis paragraphs into findings.

    Only the first five blocks are considered. Every finding cites the first
    two source URLs regardless of which source backs it.
    """
    cited = tuple(s.url for s in sources[:SOURCES_PER_FINDING])
    findings: list[Finding] = []
    for block in split_blocks(analysis)[:MAX_FINDINGS]:
        if len(block.strip()) <= MIN_FINDING_BLOCK_CHARS:
            continue
        first_line = block.split("\n")[0]
        findings.append(
            Finding(
                title=_NUMBERING.sub("", first_line)[:FINDING_TITLE_CHARS],
                content=block[:FINDING_CONTENT_CHARS],
                sources=cited,
            )
        )
    return findings


def build_report(state: ResearchState, *, generated_at: datetime | None = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    elapsed = round(state.elapsed_seconds(), 3)

    metadata = "\n".join(
        [
            f"Report Generated: {generated_at.isoformat()}",
            f"Query: {state.query}",
            f"Sources Analyzed: {len(state.search_results)}",
            f"Key Findings: {len(state.findings)}",
            f"Duration: {elapsed}s",
        ]
    )
    findings = "\n\n".join(
        f"### {i}. {f.title}\n\n{f.content}" for i, f in enumerate(state.findings, 1)
    )
    sources = "\n".join(
        f"[{i}] [{s.title}]({s.url})" for i, s in enumerate(state.search_results, 1)
    )
    summary = split_blocks(state.analysis)[0]

    return (
        f"# Research Report: {state.query}\n\n"
        f"## Executive Summary\n{summary}\n\n"
        f"## Key Findings\n{findings}\n\n"
        f"## Methodology\n{metadata}\n\n"
        f"## Sources\n{sources}"
    )
