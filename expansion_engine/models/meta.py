"""
Audit record for one pipeline stage execution.

A ``RunMetadata`` row is written when a stage starts and updated once it
finishes. It stores the secret-free config snapshot and, for generating
stages, the seed and scenario it touched. Restoring both against the same
store table reproduces the suggestion list.

Unlike the domain models this one stays mutable; stages close it through
``mark_success`` / ``mark_failed``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

from expansion_engine.utils.time_utils import utcnow

PipelineStageName = Literal["generate", "refresh", "import_stores"]
RunStatus = Literal["started", "success", "failed"]


class RunMetadata(BaseModel):
    """One stage execution.

    Attributes:
        run_id: Database key, assigned on first insert.
        run_slug: Random UUID4 used in log lines and report names.
        pipeline_stage: Stage that owns the record.
        status: ``started`` until the stage returns or raises.
        scenario_id: Scenario created or refreshed, if any.
        seed: Seed the generation ran with.
        config_snapshot: ``config_snapshot(AppConfig)`` at start time.
        rows_processed: Suggestions or stores written.
        error_message: ``str(exc)`` of the failure.
        started_at: UTC start time.
        finished_at: UTC end time, ``None`` while running.
    """

    model_config = ConfigDict(validate_assignment=True)

    run_id: Optional[int] = None
    run_slug: str
    pipeline_stage: PipelineStageName
    status: RunStatus = "started"
    scenario_id: Optional[int] = None
    seed: Optional[int] = None
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    def mark_success(self, rows: int) -> None:
        self.status = "success"
        self.rows_processed = rows
        self.finished_at = utcnow()

    def mark_failed(self, exc: BaseException) -> None:
        self.status = "failed"
        self.error_message = str(exc) or type(exc).__name__
        self.finished_at = utcnow()

    @property
    def duration_s(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
