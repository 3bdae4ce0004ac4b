"""
Tests for the adaptive grid builder.

What we test
------------
1. density_band / cell_size_for_band: band edges and cell sizes.
2. Emission: no point is emitted twice; every point lies inside the box.
3. Coarse to fine: the first pass visits every tile once before any tile
   emits its second cell.
4. Adaptive density: tiles around stores get finer cells than empty tiles.
5. Settlement mixing: ratio, ordering by population, top-up when a source
   runs dry, and the mixing stats.
6. Determinism: same seed → same sequence; a different seed changes it.
7. Unresolvable regions report ``no_region_data`` and emit nothing.
"""

from __future__ import annotations

import pytest

from expansion_engine.config import GridConfig
from expansion_engine.engine.grid import GridBuilder, cell_size_for_band, density_band
from expansion_engine.models.region import BoundingBox, RegionFilter
from expansion_engine.models.store import ExistingStore


# ── Helpers ────────────────────────────────────────────────────────────────────

def _bbox(d: dict) -> BoundingBox:
    return BoundingBox(**d)


def _drain(builder: GridBuilder, batch: int = 20) -> list:
    points = []
    while True:
        chunk = builder.next_batch(batch)
        if not chunk:
            return points
        points.extend(chunk)


def _central_cluster(n: int = 10) -> list[ExistingStore]:
    """``n`` stores packed into the central Munich tile (row 1, col 1)."""
    return [
        ExistingStore(name=f"S{i}", lat=48.132 + 0.001 * i, lng=11.570 + 0.001 * i)
        for i in range(n)
    ]


# ── Bands ──────────────────────────────────────────────────────────────────────

class TestDensityBands:
    def test_band_edges(self):
        cfg = GridConfig()
        assert density_band(0.0, cfg) == "very_sparse"
        assert density_band(0.0099, cfg) == "very_sparse"
        assert density_band(0.01, cfg) == "sparse"
        assert density_band(0.1, cfg) == "moderate"
        assert density_band(1.0, cfg) == "moderate"
        assert density_band(1.01, cfg) == "dense"

    def test_cell_sizes_shrink_with_density(self):
        cfg = GridConfig()
        sizes = [
            cell_size_for_band(b, cfg)
            for b in ("very_sparse", "sparse", "moderate", "dense")
        ]
        assert sizes == [5000.0, 2000.0, 1000.0, 500.0]

    def test_config_rejects_unordered_band_edges(self):
        with pytest.raises(ValueError):
            GridConfig(very_sparse_max=0.5, sparse_max=0.1)


# ── Emission ───────────────────────────────────────────────────────────────────

class TestEmission:
    def test_empty_region_grid_count(self, munich_bbox):
        # 4 × 3 tiles, all very sparse → 2 × 2 cells each
        builder = GridBuilder(_bbox(munich_bbox), [], [], 42, GridConfig())
        points = _drain(builder)
        assert len(points) == 48
        assert all(p.source == "grid" for p in points)
        assert all(p.cell_size_m == 5000.0 for p in points)
        assert builder.exhausted

    def test_no_point_emitted_twice(self, munich_bbox, sample_settlements):
        builder = GridBuilder(
            _bbox(munich_bbox), _central_cluster(), sample_settlements, 42, GridConfig()
        )
        points = _drain(builder, batch=17)
        ids = [p.candidate_id for p in points]
        assert len(ids) == len(set(ids))

    def test_points_stay_inside_box(self, munich_bbox):
        bbox = _bbox(munich_bbox)
        builder = GridBuilder(bbox, _central_cluster(), [], 7, GridConfig())
        for p in _drain(builder):
            assert bbox.contains(p.lat, p.lng)

    def test_next_batch_zero_returns_empty(self, munich_bbox):
        builder = GridBuilder(_bbox(munich_bbox), [], [], 1, GridConfig())
        assert builder.next_batch(0) == []
        assert not builder.exhausted

    def test_first_pass_covers_every_tile(self, munich_bbox):
        builder = GridBuilder(_bbox(munich_bbox), [], [], 99, GridConfig())
        first_pass = builder.next_batch(12)
        tiles = {builder._tile_of(p.lat, p.lng) for p in first_pass}
        assert len(tiles) == 12


# ── Adaptive density ───────────────────────────────────────────────────────────

class TestAdaptiveDensity:
    def test_store_cluster_refines_neighbouring_tiles(self, munich_bbox):
        builder = GridBuilder(_bbox(munich_bbox), _central_cluster(), [], 3, GridConfig())
        assert builder.band_at(48.137, 11.575) == "sparse"
        # Top row is two rows away from the cluster
        assert builder.band_at(48.28, 11.45) == "very_sparse"

    def test_grid_count_with_cluster(self, munich_bbox):
        # 9 sparse tiles × 25 cells + 3 very sparse tiles × 4 cells
        builder = GridBuilder(_bbox(munich_bbox), _central_cluster(), [], 3, GridConfig())
        points = _drain(builder)
        assert len(points) == 9 * 25 + 3 * 4
        sparse = [p for p in points if p.density_band == "sparse"]
        assert sparse and all(p.cell_size_m == 2000.0 for p in sparse)


# ── Settlement mixing ──────────────────────────────────────────────────────────

class TestSettlementMixing:
    def test_settlements_first_in_population_order(self, munich_bbox, sample_settlements):
        builder = GridBuilder(_bbox(munich_bbox), [], sample_settlements, 5, GridConfig())
        batch = builder.next_batch(10)
        settlement_points = [p for p in batch if p.source == "settlement"]
        # Augsburg lies outside the box
        assert [p.name for p in settlement_points] == ["München", "Unterhaching", "Garching"]
        assert settlement_points[0].population == 1_512_491
        assert settlement_points[0].state == "Bayern"

    def test_grid_tops_up_when_settlements_run_dry(self, munich_bbox, sample_settlements):
        builder = GridBuilder(_bbox(munich_bbox), [], sample_settlements, 5, GridConfig())
        batch = builder.next_batch(10)
        assert len(batch) == 10
        assert sum(1 for p in batch if p.source == "grid") == 7

    def test_settlements_top_up_when_grid_runs_dry(self, munich_bbox, sample_settlements):
        cfg = GridConfig(settlement_ratio=0.0)
        builder = GridBuilder(_bbox(munich_bbox), [], sample_settlements, 5, cfg)
        points = _drain(builder, batch=50)
        assert len(points) == 48 + 3
        assert sum(1 for p in points if p.source == "settlement") == 3

    def test_mixing_stats(self, munich_bbox, sample_settlements):
        builder = GridBuilder(_bbox(munich_bbox), [], sample_settlements, 5, GridConfig())
        builder.next_batch(10)
        stats = builder.mixing_stats()
        assert stats.settlement_candidates == 3
        assert stats.grid_candidates == 7
        assert stats.target_settlement_ratio == pytest.approx(0.6)
        assert stats.actual_settlement_ratio == pytest.approx(0.3)


# ── Determinism ────────────────────────────────────────────────────────────────

class TestDeterminism:
    def test_same_seed_same_sequence(self, munich_bbox, sample_settlements):
        a = GridBuilder(_bbox(munich_bbox), _central_cluster(), sample_settlements, 11, GridConfig())
        b = GridBuilder(_bbox(munich_bbox), _central_cluster(), sample_settlements, 11, GridConfig())
        assert _drain(a, 33) == _drain(b, 33)

    def test_different_seed_changes_grid(self, munich_bbox):
        a = _drain(GridBuilder(_bbox(munich_bbox), [], [], 11, GridConfig()))
        b = _drain(GridBuilder(_bbox(munich_bbox), [], [], 12, GridConfig()))
        assert [(p.lat, p.lng) for p in a] != [(p.lat, p.lng) for p in b]


# ── Unresolvable regions ───────────────────────────────────────────────────────

class TestNoRegionData:
    def test_none_bbox(self):
        builder = GridBuilder(None, [], [], 1, GridConfig())
        assert builder.status == "no_region_data"
        assert builder.next_batch(10) == []
        assert builder.exhausted

    def test_for_region_with_named_region(self):
        builder = GridBuilder.for_region(
            RegionFilter(state="Berlin"), [], [], 1, GridConfig()
        )
        assert builder.status == "ok"
        assert builder.next_batch(5)

    def test_for_region_unknown_name(self):
        builder = GridBuilder.for_region(
            RegionFilter(country="Atlantis"), [], [], 1, GridConfig()
        )
        assert builder.status == "no_region_data"
