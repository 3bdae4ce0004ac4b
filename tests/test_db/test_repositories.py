"""Tests for repository round-trip operations using in-memory SQLite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from expansion_engine.db.repositories.run_repo import RunMetadataRepository
from expansion_engine.db.repositories.scenario_repo import ScenarioRepository
from expansion_engine.db.repositories.store_repo import StoreRepository
from expansion_engine.models.candidate import ConfidenceBand
from expansion_engine.models.meta import RunMetadata
from expansion_engine.models.params import parse_parameters
from expansion_engine.models.region import BoundingBox
from expansion_engine.models.store import ExistingStore
from expansion_engine.models.suggestion import Suggestion, SuggestionStatus


# ── Helpers ────────────────────────────────────────────────────────────────────

def _params(seed: int = 42):
    return parse_parameters({
        "region": {"state": "Bayern"},
        "seed": seed,
        "aggression": 60,
        "enableAIRationale": True,
    })


def _suggestions(n: int = 3) -> list[Suggestion]:
    return [
        Suggestion(
            suggestion_id=f"sug-{i:012d}",
            lat=48.0 + 0.1 * i,
            lng=11.0,
            score=0.9 - 0.1 * i,
            confidence=0.8 - 0.1 * i,
            band=ConfidenceBand.HIGH if i == 0 else ConfidenceBand.MEDIUM,
            rationale="Population gap" if i == 0 else None,
            selected_by_ai=i == 0,
            rationale_quality_ok=False if i == 0 else None,
            source="settlement" if i == 0 else "grid",
            name="München" if i == 0 else None,
            sub_region="Bayern",
        )
        for i in range(n)
    ]


def _run(stage: str = "generate") -> RunMetadata:
    return RunMetadata(
        run_slug=f"slug-{stage}",
        pipeline_stage=stage,
        config_snapshot={"expansion": {"timeout_ms": 60000}},
        seed=42,
        started_at=datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
    )


# ── Stores ─────────────────────────────────────────────────────────────────────

class TestStoreRepository:
    def test_insert_and_lookup(self, in_memory_db, sample_stores):
        repo = StoreRepository(in_memory_db)
        store_id = repo.insert_store(sample_stores[0])
        assert store_id == 1
        fetched = repo.get_by_external_ref("DE-0001")
        assert fetched.name == "Marienplatz"
        assert fetched.turnover == 1_200_000.0
        assert fetched.store_id == 1

    def test_upsert_updates_existing(self, in_memory_db, sample_stores):
        repo = StoreRepository(in_memory_db)
        assert repo.upsert_stores(sample_stores) == 3
        moved = sample_stores[0].model_copy(update={"turnover": 2_000_000.0})
        assert repo.upsert_stores([moved]) == 1
        assert repo.count() == 3
        assert repo.get_by_external_ref("DE-0001").turnover == 2_000_000.0

    def test_upsert_skips_stores_without_ref(self, in_memory_db):
        repo = StoreRepository(in_memory_db)
        written = repo.upsert_stores([ExistingStore(lat=48.0, lng=11.0)])
        assert written == 0
        assert repo.count() == 0

    def test_list_filters(self, in_memory_db, sample_stores):
        repo = StoreRepository(in_memory_db)
        repo.upsert_stores(sample_stores + [
            ExistingStore(external_ref="AT-1", lat=48.2, lng=16.37, country="Austria", state="Wien"),
        ])
        assert len(repo.list_stores()) == 4
        assert len(repo.list_stores(country="Germany")) == 3
        assert [s.external_ref for s in repo.list_stores(state="Wien")] == ["AT-1"]

    def test_list_in_bbox(self, in_memory_db, sample_stores):
        repo = StoreRepository(in_memory_db)
        repo.upsert_stores(sample_stores)
        box = BoundingBox(north=48.16, south=48.13, east=11.6, west=11.55)
        assert [s.external_ref for s in repo.list_in_bbox(box)] == ["DE-0001"]

    def test_list_in_bbox_across_antimeridian(self, in_memory_db):
        repo = StoreRepository(in_memory_db)
        repo.upsert_stores([
            ExistingStore(external_ref="fj-1", lat=-17.0, lng=179.5),
            ExistingStore(external_ref="fj-2", lat=-17.0, lng=-179.5),
            ExistingStore(external_ref="nz", lat=-17.0, lng=170.0),
        ])
        box = BoundingBox(north=-15.0, south=-20.0, east=-178.0, west=177.0)
        assert {s.external_ref for s in repo.list_in_bbox(box)} == {"fj-1", "fj-2"}


# ── Scenarios ──────────────────────────────────────────────────────────────────

class TestScenarioRepository:
    def test_create_and_get(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        scenario = repo.create_scenario("Bayern Q3", _params(), "2025-01-01T00:00:00Z", _suggestions())
        assert scenario.scenario_id == 1
        fetched = repo.get_scenario(1)
        assert fetched.name == "Bayern Q3"
        assert fetched.parameters == _params()
        assert fetched.data_version == "2025-01-01T00:00:00Z"
        assert [s.suggestion_id for s in fetched.suggestions] == [
            s.suggestion_id for s in _suggestions()
        ]

    def test_suggestion_fields_round_trip(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("s", _params(), "v1", _suggestions())
        first = repo.get_suggestions(1)[0]
        assert first.selected_by_ai is True
        assert first.rationale_quality_ok is False
        assert first.source == "settlement"
        assert first.name == "München"
        assert first.band == ConfidenceBand.HIGH
        assert first.scenario_id == 1
        second = repo.get_suggestions(1)[1]
        assert second.rationale_quality_ok is None
        assert second.selected_by_ai is False

    def test_duplicate_name_rejected(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("dup", _params(), "v1")
        with pytest.raises(ValueError):
            repo.create_scenario("dup", _params(), "v1")

    def test_same_suggestion_ids_in_two_scenarios(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("a", _params(), "v1", _suggestions())
        repo.create_scenario("b", _params(), "v1", _suggestions())
        assert len(repo.get_suggestions(2)) == 3

    def test_list_newest_first(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("old", _params(), "v1")
        repo.create_scenario("new", _params(7), "v1")
        assert [s.name for s in repo.list_scenarios()] == ["new", "old"]
        assert repo.get_by_name("old").parameters.seed == 42
        assert repo.get_by_name("missing") is None

    def test_replace_and_version(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("s", _params(), "v1", _suggestions(3))
        assert repo.replace_suggestions(1, _suggestions(1)) == 1
        repo.update_data_version(1, "v2")
        scenario = repo.get_scenario(1)
        assert scenario.data_version == "v2"
        assert scenario.updated_at is not None
        assert len(scenario.suggestions) == 1

    def test_status_update(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("s", _params(), "v1", _suggestions())
        updated = repo.update_suggestion_status(1, "sug-000000000001", SuggestionStatus.APPROVED)
        assert updated.status == SuggestionStatus.APPROVED
        assert repo.get_suggestions(1)[1].status == SuggestionStatus.APPROVED

    def test_status_back_to_pending_rejected(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("s", _params(), "v1", _suggestions())
        repo.update_suggestion_status(1, "sug-000000000000", SuggestionStatus.REVIEWED)
        with pytest.raises(ValueError):
            repo.update_suggestion_status(1, "sug-000000000000", SuggestionStatus.PENDING)

    def test_status_unknown_suggestion(self, in_memory_db):
        repo = ScenarioRepository(in_memory_db)
        repo.create_scenario("s", _params(), "v1", _suggestions())
        with pytest.raises(ValueError):
            repo.update_suggestion_status(1, "sug-nope", SuggestionStatus.APPROVED)


# ── Run metadata ───────────────────────────────────────────────────────────────

class TestRunMetadataRepository:
    def test_insert_update_and_fetch(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        run = _run()
        run.run_id = repo.insert_run(run)
        run.status = "success"
        run.rows_processed = 62
        run.finished_at = datetime(2025, 1, 1, 12, 1, tzinfo=timezone.utc)
        repo.update_run(run)

        fetched = repo.get_run_by_slug("slug-generate")
        assert fetched.status == "success"
        assert fetched.rows_processed == 62
        assert fetched.seed == 42
        assert fetched.config_snapshot == {"expansion": {"timeout_ms": 60000}}
        assert fetched.finished_at is not None

    def test_update_requires_id(self, in_memory_db):
        with pytest.raises(ValueError):
            RunMetadataRepository(in_memory_db).update_run(_run())

    def test_recent_runs_filtered(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        repo.insert_run(_run("generate"))
        repo.insert_run(_run("refresh"))
        assert [r.pipeline_stage for r in repo.get_recent_runs()] == ["refresh", "generate"]
        assert [r.run_slug for r in repo.get_recent_runs("generate")] == ["slug-generate"]
