"""
Adaptive grid builder: discretizes a region into candidate points.

How it works
------------
1.  The region's bounding box is split into ``tile_size_m`` tiles (10 km by
    default). Rows follow latitude; the column count is fixed from the width
    at the box's mid latitude so every row has the same columns.
2.  Existing stores are bucketed by tile index. A tile's local density is
    the store count over the tile plus its 8 neighbours divided by the
    area of that 3×3 window, so a tile on a metro edge still sees the metro.
3.  The density picks a band and therefore a cell size:

        < very_sparse_max   → very_sparse_cell_m   (5000 m)
        < sparse_max        → sparse_cell_m        (2000 m)
        <= moderate_max     → moderate_cell_m      (1000 m)
        otherwise           → dense_cell_m         (500 m)

    The tile is cut into ``round(tile_size / cell_size)`` cells per side.
4.  Each cell yields its centroid, jittered by a seeded offset of up to
    ``jitter_fraction × cell_size`` on each axis and clamped to the tile.

Emission order (coarse to fine)
-------------------------------
Tiles are visited in a seeded permutation. Within each tile the cells are
also seeded-permuted. Pass *k* emits the *k*-th cell of every tile that has
one, so the first batches cover the whole region sparsely and later batches
refine dense tiles. ``next_batch()`` never re-emits a point.

Settlement mixing
-----------------
Settlements inside the box become ``source="settlement"`` candidates,
ordered by population descending then name ascending. Each batch takes
``ceil(n × settlement_ratio)`` of them and fills the rest from the grid;
when one source runs dry the other fills the batch.

A region that cannot be resolved, or has zero area, produces a builder
with ``status == "no_region_data"`` that emits nothing.
"""

from __future__ import annotations

import itertools
import logging
import math
from collections import defaultdict
from typing import Iterator, Literal, Optional, Sequence

from expansion_engine.config import GridConfig
from expansion_engine.models.candidate import CandidatePoint, DensityBand
from expansion_engine.models.region import BoundingBox, RegionFilter
from expansion_engine.models.result import MixingStats
from expansion_engine.models.store import ExistingStore, Settlement
from expansion_engine.regions import resolve_region
from expansion_engine.utils.geo import (
    METRES_PER_DEGREE_LAT,
    lng_span,
    normalize_lng,
)
from expansion_engine.utils.seeding import seeded_rng, stable_id

logger = logging.getLogger(__name__)

GridStatus = Literal["ok", "no_region_data"]

Tile = tuple[int, int]


def density_band(density: float, config: GridConfig) -> DensityBand:
    """Band for a store density in stores / km²."""
    if density < config.very_sparse_max:
        return "very_sparse"
    if density < config.sparse_max:
        return "sparse"
    if density <= config.moderate_max:
        return "moderate"
    return "dense"


def cell_size_for_band(band: DensityBand, config: GridConfig) -> float:
    return {
        "very_sparse": config.very_sparse_cell_m,
        "sparse": config.sparse_cell_m,
        "moderate": config.moderate_cell_m,
        "dense": config.dense_cell_m,
    }[band]


class GridBuilder:
    """Incremental candidate source for one region.

    Args:
        bbox:        Region bounding box, or ``None`` for an unresolved region.
        stores:      Read-only store snapshot (drives cell sizes).
        settlements: Named places to mix in.
        seed:        Request seed.
        config:      Grid configuration.
    """

    def __init__(
        self,
        bbox: Optional[BoundingBox],
        stores: Sequence[ExistingStore],
        settlements: Sequence[Settlement],
        seed: int,
        config: GridConfig,
    ) -> None:
        self.bbox = bbox
        self.seed = seed
        self.config = config
        self.status: GridStatus = "ok"
        self._settlement_emitted = 0
        self._grid_emitted = 0
        self._grid_done = False

        if bbox is None or bbox.area_km2 <= 0:
            self.status = "no_region_data"
            self._settlements: list[Settlement] = []
            self._grid_iter: Iterator[CandidatePoint] = iter(())
            self._grid_done = True
            logger.warning("Grid: region has no area or could not be resolved")
            return

        self._rows = self._rows_for(bbox)
        self._lat_step = (bbox.north - bbox.south) / self._rows
        mid_lat = (bbox.north + bbox.south) / 2.0
        width_m = lng_span(bbox.west, bbox.east) * METRES_PER_DEGREE_LAT * math.cos(
            math.radians(mid_lat)
        )
        self._cols = max(1, math.ceil(width_m / config.tile_size_m))
        self._lng_step = lng_span(bbox.west, bbox.east) / self._cols

        self._store_buckets = self._bucket_stores(stores)
        self._band_cache: dict[Tile, DensityBand] = {}

        self._settlements = sorted(
            (s for s in settlements if bbox.contains(s.lat, s.lng)),
            key=lambda s: (-s.population, s.name),
        )
        self._grid_iter = self._iter_grid()

        logger.info(
            "Grid: %d×%d tiles | %d stores | %d settlements in region",
            self._rows, self._cols, len(stores), len(self._settlements),
        )

    @classmethod
    def for_region(
        cls,
        region: RegionFilter,
        stores: Sequence[ExistingStore],
        settlements: Sequence[Settlement],
        seed: int,
        config: GridConfig,
    ) -> "GridBuilder":
        """Build from a region filter; unresolvable regions yield ``no_region_data``."""
        resolved = resolve_region(region)
        return cls(resolved.bbox if resolved else None, stores, settlements, seed, config)

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def exhausted(self) -> bool:
        return self._grid_done and self._settlement_emitted >= len(self._settlements)

    def next_batch(self, n: int) -> list[CandidatePoint]:
        """Return up to ``n`` points never emitted before.

        Settlements first (``ceil(n × settlement_ratio)``), then grid cells;
        either source tops up the batch when the other runs dry.
        """
        if n <= 0 or self.status != "ok":
            return []

        want_settlements = math.ceil(n * self.config.settlement_ratio)
        batch = self._take_settlements(want_settlements)
        batch.extend(self._take_grid(n - len(batch)))
        if len(batch) < n:
            batch.extend(self._take_settlements(n - len(batch)))
        return batch

    def mixing_stats(self) -> MixingStats:
        total = self._settlement_emitted + self._grid_emitted
        return MixingStats(
            settlement_candidates=self._settlement_emitted,
            grid_candidates=self._grid_emitted,
            target_settlement_ratio=self.config.settlement_ratio,
            actual_settlement_ratio=round(self._settlement_emitted / total, 4) if total else 0.0,
        )

    def band_at(self, lat: float, lng: float) -> DensityBand:
        """Density band of the tile containing a point."""
        return self._tile_band(self._tile_of(lat, lng))

    # ── Settlements ───────────────────────────────────────────────────────────

    def _take_settlements(self, n: int) -> list[CandidatePoint]:
        start = self._settlement_emitted
        chunk = self._settlements[start:start + max(0, n)]
        self._settlement_emitted += len(chunk)
        return [
            CandidatePoint(
                candidate_id=stable_id("cand", self.seed, s.lat, s.lng),
                lat=s.lat,
                lng=s.lng,
                source="settlement",
                density_band=self.band_at(s.lat, s.lng),
                name=s.name,
                population=s.population,
                state=s.state,
            )
            for s in chunk
        ]

    # ── Grid ──────────────────────────────────────────────────────────────────

    def _take_grid(self, n: int) -> list[CandidatePoint]:
        if n <= 0 or self._grid_done:
            return []
        chunk = list(itertools.islice(self._grid_iter, n))
        if len(chunk) < n:
            self._grid_done = True
        self._grid_emitted += len(chunk)
        return chunk

    def _iter_grid(self) -> Iterator[CandidatePoint]:
        tiles = [(r, c) for r in range(self._rows) for c in range(self._cols)]
        seeded_rng(self.seed, "tiles").shuffle(tiles)
        permutations: dict[Tile, list[int]] = {}

        for k in itertools.count():
            emitted = False
            for tile in tiles:
                band = self._tile_band(tile)
                per_side = self._cells_per_side(band)
                if k >= per_side * per_side:
                    continue
                order = permutations.get(tile)
                if order is None:
                    order = list(range(per_side * per_side))
                    seeded_rng(self.seed, "cells", *tile).shuffle(order)
                    permutations[tile] = order
                emitted = True
                yield self._cell_point(tile, band, per_side, order[k])
            if not emitted:
                return

    def _cells_per_side(self, band: DensityBand) -> int:
        return max(1, round(self.config.tile_size_m / cell_size_for_band(band, self.config)))

    def _cell_point(
        self, tile: Tile, band: DensityBand, per_side: int, cell: int,
    ) -> CandidatePoint:
        row, col = tile
        i, j = divmod(cell, per_side)
        tile_south = self.bbox.south + row * self._lat_step
        tile_west = self.bbox.west + col * self._lng_step
        cell_lat = self._lat_step / per_side
        cell_lng = self._lng_step / per_side

        rng = seeded_rng(self.seed, "jitter", row, col, cell)
        frac = self.config.jitter_fraction
        lat = tile_south + (i + 0.5) * cell_lat + rng.uniform(-frac, frac) * cell_lat
        lng = tile_west + (j + 0.5) * cell_lng + rng.uniform(-frac, frac) * cell_lng
        lat = min(max(lat, tile_south), tile_south + self._lat_step)
        lng = min(max(lng, tile_west), tile_west + self._lng_step)
        lng = normalize_lng(lng)
        lat, lng = round(lat, 6), round(lng, 6)

        return CandidatePoint(
            candidate_id=stable_id("cand", self.seed, lat, lng),
            lat=lat,
            lng=lng,
            source="grid",
            density_band=band,
            cell_size_m=cell_size_for_band(band, self.config),
        )

    # ── Density ───────────────────────────────────────────────────────────────

    def _rows_for(self, bbox: BoundingBox) -> int:
        height_m = (bbox.north - bbox.south) * METRES_PER_DEGREE_LAT
        return max(1, math.ceil(height_m / self.config.tile_size_m))

    def _tile_of(self, lat: float, lng: float) -> Tile:
        row = math.floor((lat - self.bbox.south) / self._lat_step)
        offset = lng_span(self.bbox.west, lng)
        # Points just west of the box wrap to ~360°; map them to negative columns
        if offset > 180.0 + lng_span(self.bbox.west, self.bbox.east) / 2.0:
            offset -= 360.0
        col = math.floor(offset / self._lng_step)
        return row, col

    def _bucket_stores(self, stores: Sequence[ExistingStore]) -> dict[Tile, int]:
        buckets: dict[Tile, int] = defaultdict(int)
        for store in stores:
            buckets[self._tile_of(store.lat, store.lng)] += 1
        return buckets

    def _tile_area_km2(self, row: int) -> float:
        lat = self.bbox.south + (row + 0.5) * self._lat_step
        height_km = self._lat_step * METRES_PER_DEGREE_LAT / 1000.0
        width_km = (
            self._lng_step * METRES_PER_DEGREE_LAT
            * max(math.cos(math.radians(lat)), 1e-6) / 1000.0
        )
        return height_km * width_km

    def _tile_band(self, tile: Tile) -> DensityBand:
        band = self._band_cache.get(tile)
        if band is not None:
            return band
        row, col = tile
        count = 0
        area = 0.0
        for dr in (-1, 0, 1):
            for dc in (-1, 0, 1):
                count += self._store_buckets.get((row + dr, col + dc), 0)
                area += self._tile_area_km2(row + dr)
        density = count / area if area > 0 else 0.0
        band = density_band(density, self.config)
        self._band_cache[tile] = band
        return band
