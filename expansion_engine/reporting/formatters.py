"""
ASCII terminal formatters for CLI output.

Formatters take models and return plain multi-line strings for
``typer.echo()``. No third-party dependencies.
"""

from __future__ import annotations

from typing import Sequence

from expansion_engine.models.result import GenerationResult
from expansion_engine.models.suggestion import Scenario, SuggestionStatus


def _trunc(text: str | None, width: int) -> str:
    text = text or ""
    return text if len(text) <= width else text[: width - 3] + "..."


def format_generation_summary(result: GenerationResult) -> str:
    """Header block: status, counts, timing, notes."""
    meta = result.metadata
    stats = meta.expansion_stats
    lines = [
        f"  Region    : {meta.region}",
        f"  Status    : {meta.status}",
        f"  Seed      : {meta.seed}",
        f"  Target    : {meta.target_count}   Returned: {len(result.suggestions)}",
        f"  Evaluated : {stats.total_evaluated} in {stats.iterations} iteration(s), "
        f"acceptance {stats.acceptance_rate:.1%}",
        f"  Avg conf. : {meta.avg_confidence:.3f}   Time: {meta.generation_time_ms} ms",
    ]
    if meta.ai_outcome is not None:
        ai = meta.ai_outcome
        state = "selected by AI" if ai.selected_by_ai else f"fallback ({ai.fallback_reason})"
        lines.append(f"  AI rerank : {state}, {ai.attempts} attempt(s)")
    if meta.rejection_reasons:
        reasons = ", ".join(f"{k}={v}" for k, v in meta.rejection_reasons.items())
        lines.append(f"  Rejected  : {reasons}")
    for note in meta.notes:
        lines.append(f"  [NOTE] {note}")
    return "\n".join(lines)


def format_suggestion_table(result: GenerationResult, limit: int = 20) -> str:
    """Ranked suggestion table (first ``limit`` rows)."""
    if not result.suggestions:
        return "  (no suggestions)"
    header = f"  {'#':>3}  {'lat':>9}  {'lng':>10}  {'score':>6}  {'band':<17}  {'place':<20}  AI"
    lines = [header, "  " + "-" * (len(header) - 2)]
    for rank, s in enumerate(result.suggestions[:limit], start=1):
        place = s.name or s.sub_region or ""
        lines.append(
            f"  {rank:>3}  {s.lat:>9.5f}  {s.lng:>10.5f}  {s.score:>6.3f}  "
            f"{s.band.value:<17}  {_trunc(place, 20):<20}  {'*' if s.selected_by_ai else ''}"
        )
    if len(result.suggestions) > limit:
        lines.append(f"  ... {len(result.suggestions) - limit} more")
    return "\n".join(lines)


def format_scenario_list(scenarios: Sequence[Scenario]) -> str:
    """One line per scenario with suggestion and review counts."""
    if not scenarios:
        return "  (no scenarios saved)"
    lines = []
    for sc in scenarios:
        reviewed = sum(1 for s in sc.suggestions if s.status != SuggestionStatus.PENDING)
        lines.append(
            f"  [{sc.scenario_id:>3}] {_trunc(sc.name, 30):<30}  "
            f"{sc.parameters.region.label():<24}  "
            f"{len(sc.suggestions):>3} suggestions ({reviewed} reviewed)  "
            f"data {sc.data_version}"
        )
    return "\n".join(lines)
