"""
Tests for candidate scoring.

What we test
------------
1. Band assignment: inclusive lower edges, monotonic in confidence.
2. Factor normalizations: population, proximity gap, turnover gap.
3. Saturation multiplier and weight renormalization.
4. Scorer: score in [0, 1], confidence = score × completeness, graceful
   degradation (sparse data never pushes confidence below score × floor).
"""

from __future__ import annotations

import pytest

from expansion_engine.config import FeatureConfig, ScoringConfig
from expansion_engine.engine.scorer import (
    Scorer,
    assign_band,
    normalize_population,
    normalize_weights,
    proximity_gap,
    reference_turnover,
    saturation_multiplier,
    turnover_gap,
)
from expansion_engine.models.candidate import CandidateFeatures, CandidatePoint, ConfidenceBand
from expansion_engine.models.store import ExistingStore

_ORDER = [
    ConfidenceBand.INSUFFICIENT_DATA,
    ConfidenceBand.LOW,
    ConfidenceBand.MEDIUM,
    ConfidenceBand.HIGH,
]


def _point() -> CandidatePoint:
    return CandidatePoint(
        candidate_id="cand-x", lat=48.0, lng=11.0, source="grid", density_band="sparse",
    )


def _features(**overrides) -> CandidateFeatures:
    base = dict(
        population=50_000.0,
        population_state="available",
        nearest_store_m=6_000.0,
        distance_state="available",
        stores_within_5km=0,
        stores_within_10km=1,
        stores_within_15km=2,
        anchor_count=None,
        anchor_score=None,
        anchor_state="unknown",
        peer_performance=800_000.0,
        peer_state="available",
        completeness=1.0,
    )
    base.update(overrides)
    return CandidateFeatures(**base)


# ── Bands ──────────────────────────────────────────────────────────────────────

class TestAssignBand:
    @pytest.mark.parametrize("confidence,band", [
        (1.0, ConfidenceBand.HIGH),
        (0.70, ConfidenceBand.HIGH),
        (0.6999, ConfidenceBand.MEDIUM),
        (0.50, ConfidenceBand.MEDIUM),
        (0.30, ConfidenceBand.LOW),
        (0.2999, ConfidenceBand.INSUFFICIENT_DATA),
        (0.0, ConfidenceBand.INSUFFICIENT_DATA),
    ])
    def test_edges(self, confidence, band):
        assert assign_band(confidence) == band

    def test_monotonic(self):
        values = [i / 100 for i in range(101)]
        ranks = [_ORDER.index(assign_band(v)) for v in values]
        assert ranks == sorted(ranks)


# ── Normalizations ─────────────────────────────────────────────────────────────

class TestNormalizations:
    def test_population(self):
        cfg = ScoringConfig()
        assert normalize_population(None, cfg) == 0.0
        assert normalize_population(0, cfg) == 0.0
        assert normalize_population(500_000, cfg) == pytest.approx(1.0)
        assert normalize_population(5_000_000, cfg) == 1.0
        assert 0.0 < normalize_population(10_000, cfg) < normalize_population(100_000, cfg)

    def test_proximity_gap(self):
        cfg = ScoringConfig()
        assert proximity_gap(None, cfg) == 1.0
        assert proximity_gap(5_000.0, cfg) == pytest.approx(0.5)
        assert proximity_gap(0.0, cfg) < 0.05
        assert proximity_gap(50_000.0, cfg) > 0.99
        assert proximity_gap(2_000.0, cfg) < proximity_gap(8_000.0, cfg)

    def test_turnover_gap(self):
        cfg = ScoringConfig()
        assert turnover_gap(None, 1_000_000.0, cfg) == 0.5
        assert turnover_gap(1_000_000.0, 1_000_000.0, cfg) == pytest.approx(0.5)
        assert turnover_gap(5_000_000.0, 1_000_000.0, cfg) == 1.0
        assert turnover_gap(500_000.0, 0.0, cfg) == 0.5

    def test_reference_turnover(self, sample_stores):
        cfg = ScoringConfig()
        assert reference_turnover(sample_stores, cfg) == pytest.approx(1_050_000.0)
        assert reference_turnover([ExistingStore(lat=0, lng=0)], cfg) == 1_000_000.0
        assert reference_turnover([], cfg) == 1_000_000.0

    def test_saturation(self):
        cfg = ScoringConfig()
        assert saturation_multiplier(0, cfg) == 1.0
        assert saturation_multiplier(3, cfg) == 1.0
        assert saturation_multiplier(4, cfg) == pytest.approx(1 / 1.25)
        assert saturation_multiplier(7, cfg) == pytest.approx(0.5)

    def test_normalize_weights(self):
        assert normalize_weights(0.5, 0.3, 0.2) == pytest.approx((0.5, 0.3, 0.2))
        assert normalize_weights(1.0, 1.0, 0.0) == pytest.approx((0.5, 0.5, 0.0))
        assert normalize_weights(0.0, 0.0, 0.0) == pytest.approx((1 / 3, 1 / 3, 1 / 3))


# ── Scorer ─────────────────────────────────────────────────────────────────────

class TestScorer:
    def test_weighted_sum(self):
        cfg = ScoringConfig()
        scorer = Scorer((0.5, 0.3, 0.2), 1_000_000.0, cfg)
        scored = scorer.score(_point(), _features())
        c = scored.components
        expected = 0.5 * c.population + 0.3 * c.proximity_gap + 0.2 * c.turnover_gap
        assert scored.score == pytest.approx(expected, abs=1e-6)
        assert c.saturation_multiplier == 1.0
        assert 0.0 <= scored.score <= 1.0

    def test_confidence_is_score_times_completeness(self):
        scorer = Scorer((0.5, 0.3, 0.2), 1_000_000.0, ScoringConfig())
        scored = scorer.score(_point(), _features(completeness=0.8))
        assert scored.confidence == pytest.approx(scored.score * 0.8, abs=1e-6)
        assert scored.band == assign_band(scored.confidence)

    def test_saturation_attenuates(self):
        scorer = Scorer((0.5, 0.3, 0.2), 1_000_000.0, ScoringConfig())
        open_area = scorer.score(_point(), _features(stores_within_5km=0))
        crowded = scorer.score(_point(), _features(stores_within_5km=7))
        assert crowded.score == pytest.approx(open_area.score * 0.5, abs=1e-6)

    def test_population_weight_only(self):
        scorer = Scorer((1.0, 0.0, 0.0), 1_000_000.0, ScoringConfig())
        small = scorer.score(_point(), _features(population=5_000.0))
        large = scorer.score(_point(), _features(population=400_000.0))
        assert large.score > small.score

    def test_graceful_degradation(self):
        """All-unknown signals still score; confidence keeps the floor."""
        fcfg = FeatureConfig()
        sparse = _features(
            population=None, population_state="unknown",
            nearest_store_m=None, distance_state="unknown",
            peer_performance=None, peer_state="unknown",
            completeness=fcfg.completeness_floor,
        )
        scored = Scorer((0.5, 0.3, 0.2), 1_000_000.0, ScoringConfig()).score(_point(), sparse)
        # population 0, proximity 1.0 (no stores), turnover neutral 0.5
        assert scored.score == pytest.approx(0.3 + 0.1)
        assert scored.confidence >= scored.score * fcfg.completeness_floor - 1e-6
