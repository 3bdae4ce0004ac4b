"""
Repository for the existing-store snapshot (``stores`` table).
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional, Sequence

from expansion_engine.db.repositories.base import BaseRepository
from expansion_engine.models.region import BoundingBox
from expansion_engine.models.store import ExistingStore
from expansion_engine.utils.geo import lng_in_span

logger = logging.getLogger(__name__)


class StoreRepository(BaseRepository):
    """Read/write access to ``stores``."""

    def insert_store(self, store: ExistingStore) -> int:
        """Insert a store and return its ``store_id``."""
        self.execute(
            """
            INSERT INTO stores (
                external_ref, name, lat, lng, turnover,
                population_band, country, state, city
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            _store_params(store),
        )
        return self.last_insert_rowid()

    def upsert_stores(self, stores: Sequence[ExistingStore]) -> int:
        """Insert or update stores keyed by ``external_ref``.

        Stores without an ``external_ref`` cannot be matched and are skipped.

        Args:
            stores: Stores to write.

        Returns:
            Number of rows written.
        """
        rows = [_store_params(s) for s in stores if s.external_ref]
        skipped = len(stores) - len(rows)
        if skipped:
            logger.warning("Skipped %d store(s) without external_ref.", skipped)
        if not rows:
            return 0
        self.executemany(
            """
            INSERT INTO stores (
                external_ref, name, lat, lng, turnover,
                population_band, country, state, city
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(external_ref) DO UPDATE SET
                name            = excluded.name,
                lat             = excluded.lat,
                lng             = excluded.lng,
                turnover        = excluded.turnover,
                population_band = excluded.population_band,
                country         = excluded.country,
                state           = excluded.state,
                city            = excluded.city,
                is_open         = 1,
                updated_at      = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            rows,
        )
        return len(rows)

    def get_by_external_ref(self, external_ref: str) -> Optional[ExistingStore]:
        row = self.fetchone("SELECT * FROM stores WHERE external_ref = ?;", (external_ref,))
        return _row_to_store(row) if row else None

    def list_stores(
        self,
        country: Optional[str] = None,
        state: Optional[str] = None,
    ) -> list[ExistingStore]:
        """Open stores, optionally filtered by country and/or state.

        Returns:
            Stores ordered by ``store_id``.
        """
        clauses = ["is_open = 1"]
        params: list[str] = []
        if country:
            clauses.append("country = ?")
            params.append(country)
        if state:
            clauses.append("state = ?")
            params.append(state)
        rows = self.fetchall(
            f"SELECT * FROM stores WHERE {' AND '.join(clauses)} ORDER BY store_id;",
            tuple(params),
        )
        return [_row_to_store(r) for r in rows]

    def list_in_bbox(self, bbox: BoundingBox) -> list[ExistingStore]:
        """Open stores inside ``bbox`` (antimeridian-aware), ordered by ``store_id``."""
        rows = self.fetchall(
            """
            SELECT * FROM stores
            WHERE is_open = 1 AND lat BETWEEN ? AND ?
            ORDER BY store_id;
            """,
            (bbox.south, bbox.north),
        )
        return [
            _row_to_store(r) for r in rows
            if lng_in_span(r["lng"], bbox.west, bbox.east)
        ]

    def count(self) -> int:
        row = self.fetchone("SELECT COUNT(*) AS n FROM stores WHERE is_open = 1;")
        return int(row["n"]) if row else 0


# ── Private helpers ────────────────────────────────────────────────────────────

def _store_params(store: ExistingStore) -> tuple:
    return (
        store.external_ref,
        store.name,
        store.lat,
        store.lng,
        store.turnover,
        store.population_band,
        store.country,
        store.state,
        store.city,
    )


def _row_to_store(row: sqlite3.Row) -> ExistingStore:
    return ExistingStore(
        store_id=row["store_id"],
        external_ref=row["external_ref"],
        name=row["name"],
        lat=row["lat"],
        lng=row["lng"],
        turnover=row["turnover"],
        population_band=row["population_band"],
        country=row["country"],
        state=row["state"],
        city=row["city"],
    )
