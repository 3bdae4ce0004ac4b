"""
Candidate scoring: normalized factors → weighted score → confidence → band.

Score formula
-------------
    weighted = w_pop · population + w_prox · proximity_gap + w_turn · turnover_gap
    score    = clamp(weighted, 0, 1) × saturation_multiplier

with the three weights taken from the generation biases and renormalized to
sum to 1 (all-zero biases → equal thirds).

Component explanations
----------------------
population (0–1):
    ``log1p(pop) / log1p(max_population_anchor)``. A city at the anchor
    population scores 1.0; unknown population scores 0.

proximity_gap (0–1):
    Logistic curve over the distance to the nearest store in km:
    ``1 / (1 + exp(-(d_km − midpoint_km) / scale_km))``. Both very close
    and very far distances saturate. No stores at all → 1.0.

turnover_gap (0–1):
    ``peer / (reference × turnover_cap_ratio)`` where the reference is the
    snapshot's mean turnover (config default when nothing reports one).
    Unknown peer performance → ``neutral_turnover_score`` (0.5).

saturation_multiplier:
    ``1 / (1 + saturation_rate × excess)`` where ``excess`` is the number of
    stores within 5 km above ``saturation_threshold``. Multiplicative, applied
    after the weighted sum and before confidence.

Confidence and band
-------------------
    confidence = score × completeness

    HIGH              confidence >= 0.70
    MEDIUM            0.50 <= confidence < 0.70
    LOW               0.30 <= confidence < 0.50
    INSUFFICIENT_DATA confidence < 0.30

The band is a pure function of confidence. Score and confidence are rounded
to 6 decimals so results serialize identically run to run.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from expansion_engine.config import ScoringConfig
from expansion_engine.models.candidate import (
    CandidateFeatures,
    CandidatePoint,
    ConfidenceBand,
    ScoreComponents,
    ScoredCandidate,
)
from expansion_engine.models.store import ExistingStore

_BAND_EDGES: tuple[tuple[float, ConfidenceBand], ...] = (
    (0.70, ConfidenceBand.HIGH),
    (0.50, ConfidenceBand.MEDIUM),
    (0.30, ConfidenceBand.LOW),
)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def assign_band(confidence: float) -> ConfidenceBand:
    """Confidence band; lower edges inclusive."""
    for edge, band in _BAND_EDGES:
        if confidence >= edge:
            return band
    return ConfidenceBand.INSUFFICIENT_DATA


def normalize_population(population: Optional[float], config: ScoringConfig) -> float:
    if population is None or population <= 0:
        return 0.0
    return _clamp(math.log1p(population) / math.log1p(config.max_population_anchor), 0.0, 1.0)


def proximity_gap(nearest_store_m: Optional[float], config: ScoringConfig) -> float:
    if nearest_store_m is None:
        return 1.0
    d_km = nearest_store_m / 1000.0
    z = (d_km - config.proximity_midpoint_km) / config.proximity_scale_km
    # exp overflows past ~709; the curve is already saturated there
    if z < -700:
        return 0.0
    return _clamp(1.0 / (1.0 + math.exp(-z)), 0.0, 1.0)


def turnover_gap(
    peer_performance: Optional[float], reference: float, config: ScoringConfig,
) -> float:
    if peer_performance is None or reference <= 0:
        return config.neutral_turnover_score
    return _clamp(peer_performance / (reference * config.turnover_cap_ratio), 0.0, 1.0)


def saturation_multiplier(stores_within_5km: int, config: ScoringConfig) -> float:
    excess = stores_within_5km - config.saturation_threshold
    if excess <= 0:
        return 1.0
    return 1.0 / (1.0 + config.saturation_rate * excess)


def reference_turnover(stores: Sequence[ExistingStore], config: ScoringConfig) -> float:
    """Mean turnover of stores that report one, else the config default."""
    values = [s.turnover for s in stores if s.turnover is not None]
    if not values:
        return config.turnover_reference_default
    mean = sum(values) / len(values)
    return mean if mean > 0 else config.turnover_reference_default


def normalize_weights(
    population_bias: float, proximity_bias: float, turnover_bias: float,
) -> tuple[float, float, float]:
    total = population_bias + proximity_bias + turnover_bias
    if total <= 0:
        return (1 / 3, 1 / 3, 1 / 3)
    return (population_bias / total, proximity_bias / total, turnover_bias / total)


class Scorer:
    """Scores candidates under one set of weights and one turnover reference.

    Args:
        weights:   (population, proximity, turnover) biases; renormalized here.
        reference: Reference turnover (see ``reference_turnover()``).
        config:    Scoring configuration.
    """

    def __init__(
        self,
        weights: tuple[float, float, float],
        reference: float,
        config: ScoringConfig,
    ) -> None:
        self.weights = normalize_weights(*weights)
        self.reference = reference
        self.config = config

    def score(self, point: CandidatePoint, features: CandidateFeatures) -> ScoredCandidate:
        w_pop, w_prox, w_turn = self.weights
        pop = normalize_population(features.population, self.config)
        prox = proximity_gap(features.nearest_store_m, self.config)
        turn = turnover_gap(features.peer_performance, self.reference, self.config)

        weighted = _clamp(w_pop * pop + w_prox * prox + w_turn * turn, 0.0, 1.0)
        multiplier = saturation_multiplier(features.stores_within_5km, self.config)
        score = round(_clamp(weighted * multiplier, 0.0, 1.0), 6)
        confidence = round(_clamp(score * features.completeness, 0.0, 1.0), 6)

        return ScoredCandidate(
            point=point,
            features=features,
            components=ScoreComponents(
                population=round(pop, 6),
                proximity_gap=round(prox, 6),
                turnover_gap=round(turn, 6),
                weighted=round(weighted, 6),
                saturation_multiplier=round(multiplier, 6),
            ),
            score=score,
            confidence=confidence,
            band=assign_band(confidence),
        )
