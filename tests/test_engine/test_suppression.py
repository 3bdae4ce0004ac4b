"""
Tests for spatial non-maximum suppression.

What we test
------------
1. Minimum separation: no two accepted candidates closer than min_distance_m.
2. The higher-scoring candidate of a close pair survives.
3. Deterministic tie-breaking on (score, lat, lng, id).
4. limit truncation and fixed seeds from earlier iterations.
5. min_distance_m <= 0 disables suppression; inputs are not mutated.
"""

from __future__ import annotations

import itertools

from expansion_engine.engine.suppression import rank_candidates, suppress
from expansion_engine.utils.geo import haversine_m


class TestSuppress:
    def test_close_pair_keeps_higher_score(self, make_scored):
        high = make_scored("a", 48.000, 11.000, 0.9)
        low = make_scored("b", 48.005, 11.000, 0.8)   # ~556 m north
        result = suppress([low, high], 800.0)
        assert [c.candidate_id for c in result.accepted] == ["a"]
        assert [c.candidate_id for c in result.suppressed] == ["b"]

    def test_distant_pair_both_kept(self, make_scored):
        a = make_scored("a", 48.000, 11.000, 0.9)
        b = make_scored("b", 48.010, 11.000, 0.8)     # ~1.1 km north
        result = suppress([a, b], 800.0)
        assert len(result.accepted) == 2

    def test_min_separation_invariant(self, make_scored):
        candidates = [
            make_scored(f"c{i}{j}", 48.0 + i * 0.003, 11.0 + j * 0.004, 0.5 + 0.01 * (i + j))
            for i in range(8)
            for j in range(8)
        ]
        result = suppress(candidates, 800.0)
        assert result.accepted
        for x, y in itertools.combinations(result.accepted, 2):
            assert haversine_m(x.lat, x.lng, y.lat, y.lng) >= 800.0
        assert len(result.accepted) + len(result.suppressed) == len(candidates)

    def test_accepted_in_score_order(self, make_scored):
        cands = [
            make_scored("a", 48.0, 11.0, 0.3),
            make_scored("b", 48.1, 11.0, 0.9),
            make_scored("c", 48.2, 11.0, 0.6),
        ]
        result = suppress(cands, 800.0)
        assert [c.candidate_id for c in result.accepted] == ["b", "c", "a"]

    def test_ties_break_on_coordinates_then_id(self, make_scored):
        a = make_scored("z", 48.000, 11.000, 0.7)
        b = make_scored("y", 48.000, 11.000, 0.7)
        c = make_scored("x", 48.003, 11.000, 0.7)
        for order in itertools.permutations([a, b, c]):
            result = suppress(list(order), 800.0)
            assert [x.candidate_id for x in result.accepted] == ["y"]

    def test_limit_truncates(self, make_scored):
        cands = [make_scored(f"c{i}", 48.0 + 0.1 * i, 11.0, 0.9 - 0.1 * i) for i in range(5)]
        result = suppress(cands, 800.0, limit=2)
        assert [c.candidate_id for c in result.accepted] == ["c0", "c1"]
        assert [c.candidate_id for c in result.truncated] == ["c2", "c3", "c4"]

    def test_fixed_seeds_block_new_candidates(self, make_scored):
        seed = make_scored("seed", 48.0, 11.0, 0.1)
        near = make_scored("near", 48.002, 11.0, 0.95)
        far = make_scored("far", 48.1, 11.0, 0.5)
        result = suppress([near, far], 800.0, fixed=[seed])
        assert [c.candidate_id for c in result.accepted] == ["far"]
        assert [c.candidate_id for c in result.suppressed] == ["near"]

    def test_pair_across_antimeridian_suppressed(self, make_scored):
        east = make_scored("east", 0.0, 179.999, 0.9)
        west = make_scored("west", 0.0, -179.999, 0.8)   # ~222 m across the seam
        result = suppress([west, east], 800.0)
        assert [c.candidate_id for c in result.accepted] == ["east"]
        assert [c.candidate_id for c in result.suppressed] == ["west"]

    def test_fixed_seed_across_antimeridian(self, make_scored):
        seed = make_scored("seed", 65.0, -179.995, 0.1)
        near = make_scored("near", 65.0, 179.995, 0.95)  # ~470 m at 65° N
        result = suppress([near], 800.0, fixed=[seed])
        assert result.accepted == []
        assert [c.candidate_id for c in result.suppressed] == ["near"]

    def test_min_separation_invariant_across_antimeridian(self, make_scored):
        lngs = [179.98, 179.985, 179.99, 179.995, -179.995, -179.99, -179.985, -179.98]
        candidates = [
            make_scored(f"c{i}{j}", -0.02 + i * 0.005, lng, 0.5 + 0.01 * ((i * 7 + j * 3) % 11))
            for i in range(8)
            for j, lng in enumerate(lngs)
        ]
        result = suppress(candidates, 1500.0)
        for x, y in itertools.combinations(result.accepted, 2):
            assert haversine_m(x.lat, x.lng, y.lat, y.lng) >= 1500.0

    def test_zero_distance_disables(self, make_scored):
        a = make_scored("a", 48.0, 11.0, 0.5)
        b = make_scored("b", 48.0, 11.0, 0.6)
        result = suppress([a, b], 0.0)
        assert [c.candidate_id for c in result.accepted] == ["b", "a"]
        assert result.suppressed == []

    def test_input_not_mutated(self, make_scored):
        cands = [make_scored("a", 48.0, 11.0, 0.2), make_scored("b", 48.5, 11.0, 0.9)]
        before = list(cands)
        suppress(cands, 800.0)
        assert cands == before

    def test_rank_candidates(self, make_scored):
        cands = [make_scored("b", 48.0, 11.0, 0.5), make_scored("a", 48.0, 11.0, 0.5)]
        assert [c.candidate_id for c in rank_candidates(cands)] == ["a", "b"]
