"""
Generation parameters — the full deterministic input of one request.

Accepts both snake_case (Python callers) and the camelCase wire names
(``minDistanceM``, ``enableAIRationale`` ...). ``parse_parameters()`` is the
request boundary: it collects every field violation and raises a single
``InvalidParametersError`` before any computation starts.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from expansion_engine.errors import InvalidParametersError
from expansion_engine.models.region import RegionFilter


class GenerationParameters(BaseModel):
    """Parameters of one generation request.

    Attributes:
        region:                   Named region or bounding box.
        aggression:               0–100; maps to the target suggestion count.
        population_bias:          Weight of the population factor, [0, 1].
        proximity_bias:           Weight of the proximity-gap factor, [0, 1].
        turnover_bias:            Weight of the turnover-gap factor, [0, 1].
        min_distance_m:           Minimum separation between suggestions (> 0).
        seed:                     Seed for every pseudo-random choice.
        target_count:             Explicit target; overrides ``aggression``.
        enable_mapbox_filtering:  Query the urban-suitability provider.
        enable_ai_rationale:      Run the LLM reranker on the final pool.
        enable_diagnostics:       Attach per-suggestion diagnostics.
        max_candidates_evaluated: Override of the config candidate cap.
        timeout_ms:               Override of the config wall-clock budget.
        scenario_id:              Scenario being regenerated, if any.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    region: RegionFilter
    aggression: float = 50.0
    population_bias: float = 0.5
    proximity_bias: float = 0.3
    turnover_bias: float = 0.2
    min_distance_m: float = 800.0
    seed: int
    target_count: Optional[int] = None
    enable_mapbox_filtering: bool = False
    enable_ai_rationale: bool = Field(default=False, alias="enableAIRationale")
    enable_diagnostics: bool = False
    max_candidates_evaluated: Optional[int] = None
    timeout_ms: Optional[int] = None
    scenario_id: Optional[int] = None

    @field_validator("aggression")
    @classmethod
    def validate_aggression(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError(f"aggression must be in [0, 100], got {v}.")
        return v

    @field_validator("population_bias", "proximity_bias", "turnover_bias")
    @classmethod
    def validate_bias(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Bias weights must be in [0, 1], got {v}.")
        return v

    @field_validator("min_distance_m")
    @classmethod
    def validate_min_distance(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"min_distance_m must be positive, got {v}.")
        return v

    @field_validator("target_count", "max_candidates_evaluated", "timeout_ms")
    @classmethod
    def validate_positive_override(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError(f"Value must be >= 1 when set, got {v}.")
        return v


def parse_parameters(data: Mapping[str, Any] | GenerationParameters) -> GenerationParameters:
    """Validate raw request data into ``GenerationParameters``.

    Raises:
        InvalidParametersError: One message per violated constraint.
    """
    if isinstance(data, GenerationParameters):
        return data
    try:
        return GenerationParameters.model_validate(dict(data))
    except ValidationError as exc:
        messages = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"]) or "parameters"
            messages.append(f"{loc}: {err['msg']}")
        raise InvalidParametersError(messages) from exc
