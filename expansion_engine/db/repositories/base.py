"""
Base repository with the SQL helpers every repository shares.

Repositories receive an open ``sqlite3.Connection`` (usually from
``get_connection()``) and never commit themselves; the connection context
manager owns the transaction. SQL is explicit, rows come back as
``sqlite3.Row`` and are mapped to pydantic models in each repository.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list[Params]) -> sqlite3.Cursor:
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def last_insert_rowid(self) -> int:
        row = self.fetchone("SELECT last_insert_rowid() AS rowid;")
        assert row is not None
        return int(row["rowid"])


def to_json(value: Any) -> str:
    """Stable JSON text for TEXT columns."""
    return json.dumps(value, sort_keys=True, default=str)


def opt_bool(value: Optional[int]) -> Optional[bool]:
    """SQLite INTEGER (or NULL) → ``bool`` (or ``None``)."""
    return None if value is None else bool(value)
