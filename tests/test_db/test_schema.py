"""Tests for SQLite schema — idempotency, table creation, FK enforcement."""

from __future__ import annotations

import sqlite3

import pytest

from expansion_engine.db.connection import get_connection
from expansion_engine.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, (
                f"Expected table '{expected_table}' not found. Found: {tables}"
            )

    def test_idempotent_double_apply(self, in_memory_db):
        apply_schema(in_memory_db)
        tables = get_existing_tables(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(tables)


class TestConstraints:
    def test_suggestion_requires_scenario(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO suggestions (scenario_id, suggestion_id, position, lat, lng,
                                         score, confidence, band)
                VALUES (999, 'sug-x', 0, 48.0, 11.0, 0.5, 0.4, 'LOW');
                """
            )

    def test_store_external_ref_unique(self, in_memory_db):
        sql = "INSERT INTO stores (external_ref, lat, lng) VALUES ('DE-1', 48.0, 11.0);"
        in_memory_db.execute(sql)
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(sql)

    def test_scenario_delete_cascades(self, in_memory_db):
        in_memory_db.execute(
            "INSERT INTO scenarios (name, parameters, data_version, created_at) "
            "VALUES ('s', '{}', 'v', '2025-01-01T00:00:00Z');"
        )
        in_memory_db.execute(
            """
            INSERT INTO suggestions (scenario_id, suggestion_id, position, lat, lng,
                                     score, confidence, band)
            VALUES (1, 'sug-x', 0, 48.0, 11.0, 0.5, 0.4, 'LOW');
            """
        )
        in_memory_db.execute("DELETE FROM scenarios WHERE scenario_id = 1;")
        count = in_memory_db.execute("SELECT COUNT(*) AS n FROM suggestions;").fetchone()["n"]
        assert count == 0


class TestGetConnection:
    def test_creates_parent_dirs_and_commits(self, tmp_path):
        db_path = str(tmp_path / "nested" / "dir" / "test.db")
        with get_connection(db_path) as conn:
            apply_schema(conn)
            conn.execute("INSERT INTO stores (external_ref, lat, lng) VALUES ('a', 1.0, 2.0);")
        with get_connection(db_path) as conn:
            row = conn.execute("SELECT external_ref FROM stores;").fetchone()
        assert row["external_ref"] == "a"

    def test_rolls_back_on_error(self, tmp_path):
        db_path = str(tmp_path / "test.db")
        with get_connection(db_path) as conn:
            apply_schema(conn)
        with pytest.raises(RuntimeError):
            with get_connection(db_path) as conn:
                conn.execute("INSERT INTO stores (external_ref, lat, lng) VALUES ('a', 1.0, 2.0);")
                raise RuntimeError("boom")
        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) AS n FROM stores;").fetchone()["n"] == 0
