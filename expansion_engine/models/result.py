"""
Generation result and metadata models.

Every field serializes to camelCase (``model_dump(by_alias=True)``) so the
JSON written by the reporting layer matches the wire contract:

    {
      "suggestions": [...],
      "metadata": {
        "totalCellsScored", "avgConfidence", "generationTimeMs", "seed",
        "expansionStats": {...}, "rejectionReasons": {...},
        "featuresEnabled": {...}, "mixingStats": {...},
        "performanceMetrics": {...}?, "aiOutcome": {...}?, ...
      }
    }

The metadata always carries enough to explain a degraded result: rejection
histogram, timeout / max-candidate flags, AI fallback reason and notes.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from expansion_engine.models.suggestion import Suggestion

GenerationStatus = Literal["ok", "partial", "no_region_data"]

_CAMEL = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ExpansionStats(BaseModel):
    """Counters of the iterative expansion loop."""

    model_config = _CAMEL

    iterations: int = 0
    total_evaluated: int = 0
    total_accepted: int = 0
    total_rejected: int = 0
    acceptance_rate: float = 0.0
    timeout_reached: bool = False
    max_candidates_reached: bool = False


class FeaturesEnabled(BaseModel):
    """Feature-flag state actually used.

    ``ai_rationale`` is True only when the final list came from the LLM;
    ``ai_rationale_requested`` records whether it was asked for.
    """

    model_config = _CAMEL

    mapbox_filtering: bool = False
    ai_rationale: bool = False
    ai_rationale_requested: bool = False
    diagnostics: bool = False


class MixingStats(BaseModel):
    """Settlement vs grid candidate counts over all emitted batches."""

    model_config = _CAMEL

    settlement_candidates: int = 0
    grid_candidates: int = 0
    target_settlement_ratio: float = 0.0
    actual_settlement_ratio: float = 0.0


class PerformanceMetrics(BaseModel):
    """Throughput and external-call accounting."""

    model_config = _CAMEL

    candidates_per_second: float = 0.0
    openai_api_calls: int = 0
    openai_tokens_used: int = 0
    openai_errors: int = 0
    openai_response_time_ms: int = 0
    provider_calls: int = 0
    provider_errors: int = 0
    provider_calls_skipped: int = 0


class GuardrailReport(BaseModel):
    """Result of the guardrail checks on a successful AI response.

    Attributes:
        balance_ok:            False when one sub-region exceeds the max share.
        dominant_sub_region:   Sub-region with the largest share.
        max_sub_region_share:  That share, [0, 1].
        low_quality_rationales: Count of rationales flagged low quality.
        overlap_ratio:         Share of AI picks inside the deterministic top-N.
        score_ratio:           AI average score / deterministic average score.
        consistency_ok:        False triggers the fallback.
    """

    model_config = _CAMEL

    balance_ok: bool = True
    dominant_sub_region: Optional[str] = None
    max_sub_region_share: float = 0.0
    low_quality_rationales: int = 0
    overlap_ratio: float = 0.0
    score_ratio: float = 0.0
    consistency_ok: bool = True


class AIOutcome(BaseModel):
    """What happened in the reranker.

    Attributes:
        state:          Final state (``SUCCESS`` or ``FALLBACK``).
        transitions:    Every state visited, in order.
        attempts:       LLM calls made.
        selected_by_ai: True when the LLM selection was used.
        error_kind:     Last ``AIStrategyError`` kind, if any.
        fallback_reason: Why the deterministic list was used, if it was.
        summary:        Optional free-text summary from the LLM.
        ai_selected_count: Suggestions picked by the LLM (rest were filled).
        guardrails:     Guardrail report, present when a response was parsed.
    """

    model_config = _CAMEL

    state: str
    transitions: list[str] = []
    attempts: int = 0
    selected_by_ai: bool = False
    error_kind: Optional[str] = None
    fallback_reason: Optional[str] = None
    summary: Optional[str] = None
    ai_selected_count: int = 0
    guardrails: Optional[GuardrailReport] = None


class GenerationMetadata(BaseModel):
    """Metadata describing one generation run."""

    model_config = _CAMEL

    status: GenerationStatus = "ok"
    region: str = ""
    seed: int
    target_count: int = 0
    total_cells_scored: int = 0
    avg_confidence: float = 0.0
    generation_time_ms: int = 0
    expansion_stats: ExpansionStats = ExpansionStats()
    rejection_reasons: dict[str, int] = {}
    features_enabled: FeaturesEnabled = FeaturesEnabled()
    mixing_stats: MixingStats = MixingStats()
    performance_metrics: Optional[PerformanceMetrics] = None
    ai_outcome: Optional[AIOutcome] = None
    notes: list[str] = []
    data_version: Optional[str] = None


class GenerationResult(BaseModel):
    """Suggestions in output order plus run metadata."""

    model_config = _CAMEL

    suggestions: list[Suggestion] = []
    metadata: GenerationMetadata

    def to_wire(self) -> dict:
        """camelCase JSON-ready dict."""
        return self.model_dump(mode="json", by_alias=True)
