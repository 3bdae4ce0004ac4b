"""
SQLite schema DDL.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables (in FK order):
  1. stores        (no FKs)   store snapshot, upserted by ``external_ref``
  2. scenarios     (no FKs)   saved parameter sets + data version
  3. suggestions   (→ scenarios)
  4. run_metadata  (→ scenarios)

Suggestion ids are derived from seed + coordinates and can repeat across
scenarios, so ``suggestions`` is keyed by ``(scenario_id, suggestion_id)``.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_STORES = """
CREATE TABLE IF NOT EXISTS stores (
    store_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    external_ref    TEXT    NOT NULL UNIQUE,
    name            TEXT    NOT NULL DEFAULT '',
    lat             REAL    NOT NULL,
    lng             REAL    NOT NULL,
    turnover        REAL,
    population_band TEXT,
    country         TEXT,
    state           TEXT,
    city            TEXT,
    is_open         INTEGER NOT NULL DEFAULT 1,
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
CREATE INDEX IF NOT EXISTS idx_stores_country_state ON stores (country, state);
"""

_DDL_SCENARIOS = """
CREATE TABLE IF NOT EXISTS scenarios (
    scenario_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT    NOT NULL UNIQUE,
    parameters      TEXT    NOT NULL,
    data_version    TEXT    NOT NULL,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT
);
"""

_DDL_SUGGESTIONS = """
CREATE TABLE IF NOT EXISTS suggestions (
    row_id               INTEGER PRIMARY KEY AUTOINCREMENT,
    scenario_id          INTEGER NOT NULL REFERENCES scenarios(scenario_id) ON DELETE CASCADE,
    suggestion_id        TEXT    NOT NULL,
    position             INTEGER NOT NULL,
    lat                  REAL    NOT NULL,
    lng                  REAL    NOT NULL,
    score                REAL    NOT NULL,
    confidence           REAL    NOT NULL,
    band                 TEXT    NOT NULL,
    rationale            TEXT,
    status               TEXT    NOT NULL DEFAULT 'PENDING',
    selected_by_ai       INTEGER NOT NULL DEFAULT 0,
    rationale_quality_ok INTEGER,
    source               TEXT    NOT NULL DEFAULT 'grid',
    name                 TEXT,
    sub_region           TEXT,
    UNIQUE (scenario_id, suggestion_id)
);
CREATE INDEX IF NOT EXISTS idx_suggestions_scenario ON suggestions (scenario_id, position);
"""

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    scenario_id     INTEGER REFERENCES scenarios(scenario_id) ON DELETE SET NULL,
    seed            INTEGER,
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    finished_at     TEXT
);
"""

_ALL_DDL: list[str] = [
    _DDL_STORES,
    _DDL_SCENARIOS,
    _DDL_SUGGESTIONS,
    _DDL_RUN_METADATA,
]

ALL_TABLE_NAMES: list[str] = [
    "stores",
    "scenarios",
    "suggestions",
    "run_metadata",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``. Idempotent.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Table names present in the database, sorted."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
