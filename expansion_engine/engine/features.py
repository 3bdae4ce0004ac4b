"""
Feature extraction: raw per-candidate signals from a read-only snapshot.

Signals
-------
population:
    Settlement candidates carry their own population (``available``).
    Grid candidates take the nearest settlement within
    ``settlement_match_radius_km``, decayed as ``pop × exp(-d_km / decay_km)``
    (``available``); with no match, the tile's density band picks a
    heuristic population (``estimated``).

distance / counts:
    Haversine metres to the nearest store, plus store counts within
    5 / 10 / 15 km. An empty snapshot leaves the distance ``unknown``.

anchors:
    Count of POIs within ``anchor_radius_m`` from the optional anchor
    provider. The diminishing-returns score Σ 1/√rank over at most 25
    anchors is kept for diagnostics. No provider or a provider error →
    ``unknown``.

peer performance:
    Inverse-distance-weighted mean turnover of stores within
    ``peer_radius_km`` that report turnover. None → ``unknown``.

urban suitability (only when a provider is supplied):
    Road distance, building distance and land-use class, each turned into a
    tri-state check (pass / fail / unknown). A provider error or a skipped
    call leaves all three ``unknown``.

Rejections
----------
``landuse_unsuitable``, ``no_road_access``, ``no_nearby_buildings`` come from
``fail`` checks only (``unknown`` never rejects). ``too_close_to_store`` is
set when an existing store is closer than ``min_distance_m``.

Completeness
------------
Each expected signal earns 1.0 (available), ``estimated_signal_credit``
(estimated) or ``1 − unknown_signal_penalty_cap`` (unknown). Completeness is
the mean credit floored at ``completeness_floor``. Urban signals are only
expected when urban filtering is enabled.
"""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import replace
from typing import Generic, Optional, Sequence, TypeVar

from expansion_engine.config import FeatureConfig
from expansion_engine.errors import ProviderUnavailableError
from expansion_engine.models.candidate import (
    CandidateFeatures,
    CandidatePoint,
    CheckState,
    SignalState,
)
from expansion_engine.models.store import ExistingStore, Settlement, UrbanSignals
from expansion_engine.providers.base import AnchorProvider, UrbanSuitabilityProvider
from expansion_engine.regions import state_for_point
from expansion_engine.utils.geo import haversine_m, metres_to_lat_degrees

logger = logging.getLogger(__name__)

_COUNT_RADII_M = (5_000.0, 10_000.0, 15_000.0)
_MAX_RANKED_ANCHORS = 25
_MIN_IDW_DISTANCE_KM = 0.1

T = TypeVar("T", ExistingStore, Settlement)


class _LatIndex(Generic[T]):
    """Points sorted by latitude for radius queries without a full scan."""

    def __init__(self, items: Sequence[T]) -> None:
        self._items = sorted(items, key=lambda p: (p.lat, p.lng))
        self._lats = [p.lat for p in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def within(self, lat: float, lng: float, radius_m: float) -> list[tuple[float, T]]:
        """(distance_m, item) pairs within ``radius_m``, nearest first."""
        span = metres_to_lat_degrees(radius_m)
        lo = bisect.bisect_left(self._lats, lat - span)
        hi = bisect.bisect_right(self._lats, lat + span)
        hits = []
        for item in self._items[lo:hi]:
            d = haversine_m(lat, lng, item.lat, item.lng)
            if d <= radius_m:
                hits.append((d, item))
        hits.sort(key=lambda h: (h[0], h[1].lat, h[1].lng))
        return hits

    def nearest(self, lat: float, lng: float, hint_radius_m: float) -> Optional[tuple[float, T]]:
        """Nearest item; searches ``hint_radius_m`` first, then everything."""
        if not self._items:
            return None
        hits = self.within(lat, lng, hint_radius_m)
        if hits:
            return hits[0]
        return min(
            ((haversine_m(lat, lng, p.lat, p.lng), p) for p in self._items),
            key=lambda h: (h[0], h[1].lat, h[1].lng),
        )


def check_distance(value: Optional[float], maximum: float) -> CheckState:
    if value is None:
        return "unknown"
    return "pass" if value <= maximum else "fail"


def check_landuse(
    landuse: Optional[str], allowed: Sequence[str], blocked: Sequence[str],
) -> CheckState:
    if landuse is None:
        return "unknown"
    key = landuse.strip().lower()
    if key in allowed:
        return "pass"
    if key in blocked:
        return "fail"
    return "unknown"


def anchor_score(anchor_count: int) -> float:
    """Diminishing returns: Σ 1/√rank over at most 25 anchors."""
    n = min(anchor_count, _MAX_RANKED_ANCHORS)
    return round(sum(1.0 / math.sqrt(rank) for rank in range(1, n + 1)), 6)


def data_completeness(states: dict[str, SignalState], config: FeatureConfig) -> float:
    """Mean per-signal credit, floored at ``completeness_floor``."""
    if not states:
        return 1.0
    credit = {
        "available": 1.0,
        "estimated": config.estimated_signal_credit,
        "unknown": 1.0 - config.unknown_signal_penalty_cap,
    }
    mean = sum(credit[s] for s in states.values()) / len(states)
    return round(max(config.completeness_floor, mean), 6)


class FeatureExtractor:
    """Computes ``CandidateFeatures`` for one generation request.

    The store snapshot and settlement list are indexed once at construction.
    Provider call accounting (calls / errors / skipped) accumulates on the
    instance and is read back by the orchestrator.

    Args:
        stores:          Read-only store snapshot.
        settlements:     Named places (may be empty).
        config:          Feature configuration.
        min_distance_m:  Minimum separation; closer stores reject a candidate.
        anchor_provider: Optional POI provider.
        urban_provider:  Optional urban-suitability provider; ``None`` means
                         urban filtering is disabled and the signals are omitted.
        urban_timeout_seconds: Default per-call urban timeout.
    """

    def __init__(
        self,
        stores: Sequence[ExistingStore],
        settlements: Sequence[Settlement],
        config: FeatureConfig,
        min_distance_m: float = 0.0,
        anchor_provider: Optional[AnchorProvider] = None,
        urban_provider: Optional[UrbanSuitabilityProvider] = None,
        urban_timeout_seconds: float = 5.0,
    ) -> None:
        self.config = config
        self.urban_timeout_seconds = urban_timeout_seconds
        self.min_distance_m = min_distance_m
        self.anchor_provider = anchor_provider
        self.urban_provider = urban_provider
        self._stores = _LatIndex(stores)
        self._settlements = _LatIndex(settlements)
        self._allowed = [x.lower() for x in config.allowed_landuse]
        self._blocked = [x.lower() for x in config.blocked_landuse]

        self.provider_calls = 0
        self.provider_errors = 0
        self.provider_calls_skipped = 0

    @property
    def urban_enabled(self) -> bool:
        return self.urban_provider is not None

    def extract(
        self, point: CandidatePoint, urban_timeout: Optional[float] = None,
    ) -> CandidateFeatures:
        """Compute all signals for one candidate.

        Args:
            point:         Candidate from the grid builder.
            urban_timeout: Per-call timeout (seconds) for the urban provider;
                           ``0`` skips the call. Ignored when urban is disabled.
        """
        population, population_state, settlement_state = self._population(point)
        nearest_m, counts = self._store_distances(point)
        anchor_count, anchors, anchor_state = self._anchors(point)
        peer, peer_state = self._peer_performance(point)

        sub_region = point.state or settlement_state or state_for_point(point.lat, point.lng)

        reasons: list[str] = []
        urban_fields: dict = {}
        if self.urban_enabled:
            urban_fields = self._urban(point, urban_timeout)
            if urban_fields["landuse_check"] == "fail":
                reasons.append("landuse_unsuitable")
            if urban_fields["road_check"] == "fail":
                reasons.append("no_road_access")
            if urban_fields["building_check"] == "fail":
                reasons.append("no_nearby_buildings")
        if nearest_m is not None and nearest_m < self.min_distance_m:
            reasons.append("too_close_to_store")

        features = CandidateFeatures(
            population=population,
            population_state=population_state,
            nearest_store_m=nearest_m,
            distance_state="available" if nearest_m is not None else "unknown",
            stores_within_5km=counts[0],
            stores_within_10km=counts[1],
            stores_within_15km=counts[2],
            anchor_count=anchor_count,
            anchor_score=anchors,
            anchor_state=anchor_state,
            peer_performance=peer,
            peer_state=peer_state,
            sub_region=sub_region,
            rejection_reasons=tuple(reasons),
            **urban_fields,
        )
        completeness = data_completeness(features.signal_states(), self.config)
        return replace(features, completeness=completeness)

    # ── Signals ───────────────────────────────────────────────────────────────

    def _population(
        self, point: CandidatePoint,
    ) -> tuple[Optional[float], SignalState, Optional[str]]:
        if point.source == "settlement" and point.population is not None:
            return point.population, "available", point.state

        radius_m = self.config.settlement_match_radius_km * 1000.0
        hits = self._settlements.within(point.lat, point.lng, radius_m)
        if hits:
            d_m, settlement = hits[0]
            decay = math.exp(-(d_m / 1000.0) / self.config.population_decay_km)
            return round(settlement.population * decay, 2), "available", settlement.state

        heuristic = self.config.heuristic_population.get(point.density_band)
        if heuristic is None:
            return None, "unknown", None
        return heuristic, "estimated", None

    def _store_distances(self, point: CandidatePoint) -> tuple[Optional[float], list[int]]:
        if not len(self._stores):
            return None, [0, 0, 0]
        hits = self._stores.within(point.lat, point.lng, _COUNT_RADII_M[-1])
        counts = [sum(1 for d, _ in hits if d <= r) for r in _COUNT_RADII_M]
        nearest = self._stores.nearest(point.lat, point.lng, _COUNT_RADII_M[-1])
        return round(nearest[0], 2), counts

    def _anchors(self, point: CandidatePoint) -> tuple[Optional[int], Optional[float], SignalState]:
        if self.anchor_provider is None:
            return None, None, "unknown"
        self.provider_calls += 1
        try:
            anchors = self.anchor_provider.get_anchors(
                point.lat, point.lng, self.config.anchor_radius_m
            )
        except ProviderUnavailableError as exc:
            self.provider_errors += 1
            logger.warning("Anchor provider unavailable for %s: %s", point.candidate_id, exc)
            return None, None, "unknown"
        return len(anchors), anchor_score(len(anchors)), "available"

    def _peer_performance(self, point: CandidatePoint) -> tuple[Optional[float], SignalState]:
        hits = self._stores.within(point.lat, point.lng, self.config.peer_radius_km * 1000.0)
        weighted = 0.0
        weights = 0.0
        for d_m, store in hits:
            if store.turnover is None:
                continue
            w = 1.0 / max(d_m / 1000.0, _MIN_IDW_DISTANCE_KM)
            weighted += w * store.turnover
            weights += w
        if weights == 0.0:
            return None, "unknown"
        return round(weighted / weights, 2), "available"

    def _urban(self, point: CandidatePoint, timeout: Optional[float]) -> dict:
        unknown = {
            "urban_state": "unknown",
            "road_check": "unknown",
            "building_check": "unknown",
            "landuse_check": "unknown",
        }
        if timeout is not None and timeout <= 0:
            self.provider_calls_skipped += 1
            return unknown

        self.provider_calls += 1
        try:
            signals: UrbanSignals = self.urban_provider.get_signals(
                point.lat, point.lng, timeout if timeout is not None else self.urban_timeout_seconds
            )
        except ProviderUnavailableError as exc:
            self.provider_errors += 1
            logger.warning("Urban provider unavailable for %s: %s", point.candidate_id, exc)
            return unknown

        present = sum(
            v is not None
            for v in (signals.road_distance_m, signals.building_distance_m, signals.landuse_type)
        )
        state: SignalState = "available" if present == 3 else ("estimated" if present else "unknown")
        return {
            "urban_state": state,
            "road_distance_m": signals.road_distance_m,
            "building_distance_m": signals.building_distance_m,
            "landuse_type": signals.landuse_type,
            "road_check": check_distance(signals.road_distance_m, self.config.max_road_distance_m),
            "building_check": check_distance(
                signals.building_distance_m, self.config.max_building_distance_m
            ),
            "landuse_check": check_landuse(signals.landuse_type, self._allowed, self._blocked),
        }
