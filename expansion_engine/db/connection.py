"""
Opening the scenario database.

Every repository call goes through ``get_connection()``, which commits when
the ``with`` block exits normally and rolls back when it raises. Foreign keys
are switched on per connection so deleting a scenario cascades to its
suggestions.

Usage::

    with get_connection("data/db/expansion_engine.db") as conn:
        ScenarioRepository(conn).list_scenarios()
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

MEMORY = ":memory:"


def _apply_pragmas(conn: sqlite3.Connection, wal_mode: bool, busy_timeout_ms: int, on_disk: bool) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
    # WAL lets list-scenarios read while a generate run is writing.
    if wal_mode and on_disk:
        conn.execute("PRAGMA journal_mode = WAL;")


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Iterator[sqlite3.Connection]:
    """Yield a connection with ``sqlite3.Row`` rows and foreign keys enforced.

    Args:
        db_path: Database file (its directory is created) or ``":memory:"``.
        wal_mode: Switch on-disk databases to WAL journaling.
        busy_timeout_ms: How long a write waits on a competing lock.
    """
    on_disk = db_path != MEMORY
    if on_disk:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row
    try:
        _apply_pragmas(conn, wal_mode, busy_timeout_ms, on_disk)
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        conn.close()
