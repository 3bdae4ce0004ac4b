"""
Suggestion and scenario models — the output/persisted side of the engine.

A ``Suggestion`` is immutable once emitted. Status changes after human
review happen in the persistence layer (``ScenarioRepository``), which
replaces the stored row; the engine itself always emits ``PENDING``.

Allowed status transitions
--------------------------
    PENDING   → APPROVED | REJECTED | REVIEWED
    APPROVED  → REJECTED | REVIEWED
    REJECTED  → APPROVED | REVIEWED
    REVIEWED  → APPROVED | REJECTED
Nothing returns to ``PENDING``.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from expansion_engine.models.candidate import ConfidenceBand
from expansion_engine.models.params import GenerationParameters


class SuggestionStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVIEWED = "REVIEWED"


def can_transition(current: SuggestionStatus, new: SuggestionStatus) -> bool:
    """True if a suggestion may move from ``current`` to ``new``."""
    return new != SuggestionStatus.PENDING and new != current


class Suggestion(BaseModel):
    """A finalized candidate as emitted to callers.

    Attributes:
        suggestion_id:        Stable id (seed + rounded coordinates).
        lat, lng:             Coordinates in degrees.
        score:                Composite score, [0, 1].
        confidence:           ``score × completeness``, [0, 1].
        band:                 Confidence band.
        rationale:            AI rationale, if the reranker provided one.
        status:               Review status; always ``PENDING`` on emission.
        scenario_id:          Owning scenario, if saved.
        selected_by_ai:       True only when the LLM picked this suggestion.
        rationale_quality_ok: ``False`` when the rationale failed the quality check.
        source:               ``settlement`` or ``grid``.
        name:                 Settlement name, if any.
        sub_region:           Administrative state, if known.
        diagnostics:          Raw features and components (diagnostics mode).
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    suggestion_id: str
    lat: float
    lng: float
    score: float
    confidence: float
    band: ConfidenceBand
    rationale: Optional[str] = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    scenario_id: Optional[int] = None
    selected_by_ai: bool = Field(default=False, alias="selectedByAI")
    rationale_quality_ok: Optional[bool] = None
    source: str = "grid"
    name: Optional[str] = None
    sub_region: Optional[str] = None
    diagnostics: Optional[dict[str, Any]] = None


class Scenario(BaseModel):
    """Named, persisted snapshot of parameters and resulting suggestions.

    Attributes:
        scenario_id:  Auto-assigned DB PK; ``None`` before insertion.
        name:         Unique human-readable name.
        parameters:   The generation parameters the suggestions came from.
        data_version: UTC stamp of the store data the suggestions reflect.
        created_at:   UTC creation time.
        updated_at:   UTC time of the last refresh, if any.
        suggestions:  Suggestions in output order.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    scenario_id: Optional[int] = None
    name: str
    parameters: GenerationParameters
    data_version: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    suggestions: list[Suggestion] = []
