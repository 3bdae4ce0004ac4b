"""Tests for expansion_engine.reporting.formatters."""

from __future__ import annotations

from datetime import datetime, timezone

from expansion_engine.models.candidate import ConfidenceBand
from expansion_engine.models.params import parse_parameters
from expansion_engine.models.result import (
    AIOutcome,
    ExpansionStats,
    GenerationMetadata,
    GenerationResult,
)
from expansion_engine.models.suggestion import Scenario, Suggestion, SuggestionStatus
from expansion_engine.reporting.formatters import (
    format_generation_summary,
    format_scenario_list,
    format_suggestion_table,
)


def _suggestion(i: int, **kwargs) -> Suggestion:
    base = dict(
        suggestion_id=f"sug-{i}",
        lat=48.1,
        lng=11.5,
        score=0.5,
        confidence=0.4,
        band=ConfidenceBand.MEDIUM,
    )
    base.update(kwargs)
    return Suggestion(**base)


def _result(suggestions=(), **meta) -> GenerationResult:
    return GenerationResult(
        suggestions=list(suggestions),
        metadata=GenerationMetadata(seed=1, region="Bayern, Germany", **meta),
    )


# ── format_generation_summary ─────────────────────────────────────────────────


def test_summary_basic_fields() -> None:
    text = format_generation_summary(_result(
        target_count=10,
        expansion_stats=ExpansionStats(iterations=2, total_evaluated=150, acceptance_rate=0.2),
    ))
    assert "Bayern, Germany" in text
    assert "Target    : 10" in text
    assert "150 in 2 iteration(s)" in text
    assert "20.0%" in text
    assert "AI rerank" not in text


def test_summary_ai_fallback_and_notes() -> None:
    text = format_generation_summary(_result(
        ai_outcome=AIOutcome(state="FALLBACK", attempts=3, fallback_reason="retries_exhausted"),
        rejection_reasons={"too_close_to_store": 4},
        notes=["settlement provider unavailable"],
    ))
    assert "fallback (retries_exhausted), 3 attempt(s)" in text
    assert "too_close_to_store=4" in text
    assert "[NOTE] settlement provider unavailable" in text


def test_summary_ai_selected() -> None:
    text = format_generation_summary(_result(
        ai_outcome=AIOutcome(state="SUCCESS", attempts=1, selected_by_ai=True),
    ))
    assert "selected by AI, 1 attempt(s)" in text


# ── format_suggestion_table ───────────────────────────────────────────────────


def test_table_empty() -> None:
    assert "(no suggestions)" in format_suggestion_table(_result())


def test_table_rows_and_ai_marker() -> None:
    text = format_suggestion_table(_result([
        _suggestion(0, name="Laim", selected_by_ai=True),
        _suggestion(1, sub_region="Bayern"),
    ]))
    lines = text.splitlines()
    assert len(lines) == 4
    assert "Laim" in lines[2] and lines[2].rstrip().endswith("*")
    assert "Bayern" in lines[3] and not lines[3].rstrip().endswith("*")


def test_table_truncates_to_limit() -> None:
    text = format_suggestion_table(_result([_suggestion(i) for i in range(5)]), limit=3)
    assert "... 2 more" in text


def test_table_truncates_long_names() -> None:
    text = format_suggestion_table(_result([_suggestion(0, name="X" * 40)]))
    assert "X" * 17 + "..." in text
    assert "X" * 21 not in text


# ── format_scenario_list ──────────────────────────────────────────────────────


def test_scenario_list_empty() -> None:
    assert "(no scenarios saved)" in format_scenario_list([])


def test_scenario_list_counts_reviewed() -> None:
    scenario = Scenario(
        scenario_id=3,
        name="Bayern Q3",
        parameters=parse_parameters({"region": {"state": "Bayern"}, "seed": 1}),
        data_version="2025-01-01T00:00:00Z",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        suggestions=[
            _suggestion(0, status=SuggestionStatus.APPROVED),
            _suggestion(1),
            _suggestion(2, status=SuggestionStatus.REJECTED),
        ],
    )
    text = format_scenario_list([scenario])
    assert "[  3] Bayern Q3" in text
    assert "3 suggestions (2 reviewed)" in text
    assert "data 2025-01-01T00:00:00Z" in text
