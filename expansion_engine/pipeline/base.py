"""
Stage runner shared by generate, refresh and import_stores.

A stage is built once from ``AppConfig`` and invoked through ``run()``.
``run()`` opens a ``RunMetadata`` row, hands it to the subclass's
``_execute()`` (which may fill in ``seed`` / ``scenario_id``), then closes
the row as ``success`` or ``failed``. A failure is recorded first and
re-raised to the caller unchanged.

Usage::

    stage = GenerateStage(config=app_config)
    run = stage.run(request={"region": {"country": "Germany"}, "seed": 1})
    print(run.status, run.rows_processed, stage.last_result.metadata.region)
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

from expansion_engine.config import AppConfig, config_snapshot
from expansion_engine.db.connection import get_connection
from expansion_engine.db.repositories.run_repo import RunMetadataRepository
from expansion_engine.models.meta import RunMetadata
from expansion_engine.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Base class for audited stages.

    Subclasses set ``stage_name`` and implement ``_execute``.
    """

    stage_name: str

    def __init__(self, config: AppConfig, db_path: str | None = None) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        db = self.config.database
        with get_connection(self.db_path, db.wal_mode, db.busy_timeout_ms) as conn:
            yield conn

    def run(self, **kwargs) -> RunMetadata:
        """Run the stage under a ``RunMetadata`` record.

        Args:
            **kwargs: Forwarded to ``_execute``.

        Returns:
            The closed run record.

        Raises:
            Exception: Whatever ``_execute`` raised, after the failure is stored.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            config_snapshot=config_snapshot(self.config),
            started_at=utcnow(),
        )
        self._save(run)
        log_extra = {"run_slug": run.run_slug}
        logger.info("%s: started (%s)", self.stage_name, run.run_slug, extra=log_extra)

        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.mark_failed(exc)
            self._save(run)
            logger.error(
                "%s: failed after %.2fs: %s", self.stage_name, run.duration_s, exc,
                extra={**log_extra, "seed": run.seed},
            )
            raise

        run.mark_success(rows)
        self._save(run)
        logger.info(
            "%s: %d row(s) in %.2fs", self.stage_name, rows, run.duration_s,
            extra={**log_extra, "seed": run.seed, "scenario_id": run.scenario_id},
        )
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Do the stage's work and return the number of rows it produced."""

    def _save(self, run: RunMetadata) -> None:
        # An audit write that fails must not replace the stage's own error.
        try:
            with self._connect() as conn:
                repo = RunMetadataRepository(conn)
                if run.run_id is None:
                    run.run_id = repo.insert_run(run)
                else:
                    repo.update_run(run)
        except (sqlite3.Error, OSError) as exc:
            logger.error("%s: could not store run %s: %s", self.stage_name, run.run_slug, exc)
