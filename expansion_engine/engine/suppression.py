"""
Spatial non-maximum suppression (NMS).

Greedy selection that keeps only the locally-best candidates:

1.  Sort by ``(-score, lat, lng, candidate_id)``. The secondary keys make
    ties resolve identically on every run.
2.  Walk the sorted list; accept a candidate unless it lies within
    ``min_distance_m`` (haversine) of an already accepted one or of a
    fixed seed (candidates accepted in earlier expansion iterations).
3.  Stop accepting once ``limit`` candidates are accepted; the remainder is
    reported as truncated.

``min_distance_m <= 0`` keeps everything (still sorted). Inputs are never
mutated: new lists are returned.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from expansion_engine.models.candidate import ScoredCandidate
from expansion_engine.utils.geo import haversine_m, metres_to_lat_degrees


@dataclass
class SuppressionResult:
    """Outcome of one suppression pass, each list in score order.

    Attributes:
        accepted:   Newly accepted candidates.
        suppressed: Rejected for lying too close to an accepted candidate.
        truncated:  Never considered because ``limit`` was already reached.
    """

    accepted: list[ScoredCandidate] = field(default_factory=list)
    suppressed: list[ScoredCandidate] = field(default_factory=list)
    truncated: list[ScoredCandidate] = field(default_factory=list)


def sort_key(candidate: ScoredCandidate) -> tuple[float, float, float, str]:
    return (-candidate.score, candidate.lat, candidate.lng, candidate.candidate_id)


def rank_candidates(candidates: Sequence[ScoredCandidate]) -> list[ScoredCandidate]:
    """Deterministic descending-score order."""
    return sorted(candidates, key=sort_key)


class _AcceptedIndex:
    """Accepted points bucketed on a lat/lng grid sized to ``min_distance_m``.

    Longitude columns wrap at ±180° so points on both sides of the
    antimeridian share neighbouring columns.
    """

    def __init__(self, min_distance_m: float) -> None:
        self.min_distance_m = min_distance_m
        self._cell_deg = max(metres_to_lat_degrees(min_distance_m), 1e-6)
        self._n_cols = max(int(math.ceil(360.0 / self._cell_deg)), 1)
        self._cells: dict[tuple[int, int], list[tuple[float, float]]] = {}

    def _cell(self, lat: float, lng: float) -> tuple[int, int]:
        col = math.floor((lng + 180.0) / self._cell_deg) % self._n_cols
        return math.floor(lat / self._cell_deg), col

    def _columns(self, col: int, lat: float) -> list[int]:
        # Longitude degrees shrink with latitude; widen the column search
        cos_lat = max(math.cos(math.radians(lat)), 1e-6)
        reach = int(math.ceil(1.0 / cos_lat)) + 1
        if 2 * reach + 1 >= self._n_cols:
            return list(range(self._n_cols))
        return [(col + dc) % self._n_cols for dc in range(-reach, reach + 1)]

    def add(self, lat: float, lng: float) -> None:
        self._cells.setdefault(self._cell(lat, lng), []).append((lat, lng))

    def conflicts(self, lat: float, lng: float) -> bool:
        row, col = self._cell(lat, lng)
        columns = self._columns(col, lat)
        for dr in range(-2, 3):
            for c in columns:
                for other_lat, other_lng in self._cells.get((row + dr, c), ()):
                    if haversine_m(lat, lng, other_lat, other_lng) < self.min_distance_m:
                        return True
        return False


def suppress(
    candidates: Sequence[ScoredCandidate],
    min_distance_m: float,
    limit: Optional[int] = None,
    fixed: Sequence[ScoredCandidate] = (),
) -> SuppressionResult:
    """Greedy NMS over ``candidates``.

    Args:
        candidates:     Scored candidates in any order.
        min_distance_m: Minimum separation in metres; ``<= 0`` disables it.
        limit:          Maximum number of new acceptances; ``None`` = unlimited.
        fixed:          Previously accepted candidates that new ones must
                        keep their distance from. Never returned.

    Returns:
        ``SuppressionResult``.
    """
    ordered = rank_candidates(candidates)
    result = SuppressionResult()

    if min_distance_m <= 0:
        if limit is None:
            result.accepted = ordered
        else:
            result.accepted = ordered[:limit]
            result.truncated = ordered[limit:]
        return result

    index = _AcceptedIndex(min_distance_m)
    for seed in fixed:
        index.add(seed.lat, seed.lng)

    for candidate in ordered:
        if limit is not None and len(result.accepted) >= limit:
            result.truncated.append(candidate)
            continue
        if index.conflicts(candidate.lat, candidate.lng):
            result.suppressed.append(candidate)
            continue
        index.add(candidate.lat, candidate.lng)
        result.accepted.append(candidate)
    return result
