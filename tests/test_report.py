from __future__ import annotations

from datetime import datetime, timezone

from conftest import ANALYSIS_TEXT, make_result
from researcher.agents import report
from researcher.models.research import Finding, ResearchState


def test_extract_search_queries_takes_dash_lines_only():
    plan = (
        "1. Figure out the market size\n"
        "- first query\n"
        "   -   indented query  \n"
        "not a query - really\n"
        "-\n"
        "- \n"
    )

    assert report.extract_search_queries(plan) == ["first query", "indented query"]


def test_extract_search_queries_empty_plan():
    assert report.extract_search_queries("No bullet points here.\nNone at all.") == []


def test_extract_findings_uses_first_five_long_blocks():
    sources = [
        make_result("https://a.example"),
        make_result("https://b.example"),
        make_result("https://c.example"),
    ]

    findings = report.extract_findings(ANALYSIS_TEXT, sources)

    assert [f.title for f in findings] == [
        "Solid state batteries are moving from pilot lines toward limited production runs.",
        "Manufacturing cost remains the main obstacle",
        "Automakers are hedging their bets",
    ]
    assert all(f.sources == ("https://a.example", "https://b.example") for f in findings)


def test_extract_findings_skips_short_blocks_and_truncates():
    long_line = "3. " + "x" * 150
    analysis = "short\n\n" + long_line + "\n" + "y" * 400

    findings = report.extract_findings(analysis, [])

    assert len(findings) == 1
    assert findings[0].title == "x" * 100
    assert len(findings[0].content) == 300
    assert findings[0].sources == ()


def test_extract_findings_only_looks_at_first_five_blocks():
    blocks = ["tiny"] * 5 + ["z" * 80]
    assert report.extract_findings("\n\n".join(blocks), []) == []


def test_build_report_sections():
    state = ResearchState(
        query="solid state batteries",
        analysis="Summary paragraph.\n\nSecond paragraph.",
        search_results=[make_result("https://a.example", "Source A")],
        findings=[Finding(title="Cost", content="Cost is high.", sources=("https://a.example",))],
        start_time=100.0,
        end_time=102.5,
    )

    text = report.build_report(
        state, generated_at=datetime(2026, 1, 2, tzinfo=timezone.utc)
    )

    assert text.startswith("# Research Report: solid state batteries\n")
    assert "## Executive Summary\nSummary paragraph.\n" in text
    assert "### 1. Cost\n\nCost is high." in text
    assert "Report Generated: 2026-01-02T00:00:00+00:00" in text
    assert "Sources Analyzed: 1" in text
    assert "Key Findings: 1" in text
    assert "Duration: 2.5s" in text
    assert text.endswith("## Sources\n[1] [Source A](https://a.example)")


def test_build_report_with_no_sources_has_empty_sources_section():
    state = ResearchState(query="empty research", analysis="Nothing found.")

    text = report.build_report(state)

    assert text.endswith("## Sources\n")
    assert "Sources Analyzed: 0" in text
