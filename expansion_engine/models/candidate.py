"""
Candidate records as they move through the engine.

Lifecycle
---------
``CandidatePoint``    — emitted by the grid builder (coordinates + origin).
``CandidateFeatures`` — raw signals computed by the feature extractor.
``ScoredCandidate``   — point + features + score/confidence/band; this is
                        what the suppressor and reranker operate on.

All three are frozen dataclasses: each stage returns new objects (the
reranker uses ``dataclasses.replace`` to attach rationales) rather than
mutating its input.

Unknown signals are explicit: every optional signal is ``None`` when missing
and carries a ``SignalState`` so "unknown" is never confused with zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, Optional

SignalState = Literal["available", "estimated", "unknown"]
CheckState = Literal["pass", "fail", "unknown"]
CandidateSource = Literal["settlement", "grid"]
DensityBand = Literal["very_sparse", "sparse", "moderate", "dense"]


class ConfidenceBand(StrEnum):
    """Discretized confidence tier. Lower edges are inclusive."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


@dataclass(frozen=True)
class CandidatePoint:
    """A prospective location emitted by the grid builder.

    Attributes:
        candidate_id:  Stable id derived from the seed and rounded coordinates.
        lat, lng:      Coordinates in degrees.
        source:        ``"settlement"`` (named place) or ``"grid"`` (cell centroid).
        density_band:  Store-density band of the tile the point falls in.
        cell_size_m:   Cell edge for grid points; ``None`` for settlements.
        name:          Settlement name, if any.
        population:    Settlement population, if any.
        state:         Administrative state of the settlement, if known.
    """

    candidate_id: str
    lat: float
    lng: float
    source: CandidateSource
    density_band: DensityBand
    cell_size_m: Optional[float] = None
    name: Optional[str] = None
    population: Optional[float] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class CandidateFeatures:
    """Raw per-candidate signals.

    Urban fields are all ``None`` and ``urban_state`` is ``None`` when urban
    filtering is disabled (signals omitted, not unknown).
    """

    population: Optional[float]
    population_state: SignalState
    nearest_store_m: Optional[float]
    distance_state: SignalState
    stores_within_5km: int
    stores_within_10km: int
    stores_within_15km: int
    anchor_count: Optional[int]
    anchor_score: Optional[float]
    anchor_state: SignalState
    peer_performance: Optional[float]
    peer_state: SignalState
    sub_region: Optional[str] = None
    urban_state: Optional[SignalState] = None
    road_distance_m: Optional[float] = None
    building_distance_m: Optional[float] = None
    landuse_type: Optional[str] = None
    road_check: Optional[CheckState] = None
    building_check: Optional[CheckState] = None
    landuse_check: Optional[CheckState] = None
    completeness: float = 1.0
    rejection_reasons: tuple[str, ...] = ()

    @property
    def rejected(self) -> bool:
        return bool(self.rejection_reasons)

    def signal_states(self) -> dict[str, SignalState]:
        """Per-signal availability, in a fixed key order."""
        states: dict[str, SignalState] = {
            "population": self.population_state,
            "distance": self.distance_state,
            "anchors": self.anchor_state,
            "peer_performance": self.peer_state,
        }
        if self.urban_state is not None:
            states["urban"] = self.urban_state
        return states


@dataclass(frozen=True)
class ScoreComponents:
    """Normalized factor values and the attenuation applied to their sum.

    Attributes:
        population:            0–1, log-scaled population.
        proximity_gap:         0–1, sigmoid over distance to the nearest store.
        turnover_gap:          0–1, peer turnover against the reference.
        weighted:              Weighted sum before saturation.
        saturation_multiplier: ``1 / (1 + rate × excess)``; 1.0 when unsaturated.
    """

    population: float
    proximity_gap: float
    turnover_gap: float
    weighted: float
    saturation_multiplier: float = 1.0


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its composite score, confidence and band."""

    point: CandidatePoint
    features: CandidateFeatures
    components: ScoreComponents
    score: float
    confidence: float
    band: ConfidenceBand
    rationale: Optional[str] = None
    rationale_quality_ok: Optional[bool] = None
    selected_by_ai: bool = False

    @property
    def candidate_id(self) -> str:
        return self.point.candidate_id

    @property
    def lat(self) -> float:
        return self.point.lat

    @property
    def lng(self) -> float:
        return self.point.lng

    @property
    def sub_region(self) -> Optional[str]:
        return self.features.sub_region
