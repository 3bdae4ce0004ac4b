"""
Repository for saved scenarios and their suggestions.

A scenario row stores the generation parameters as camelCase JSON (the
same shape a request arrives in) plus the data version of the store
snapshot the suggestions were computed from. Suggestions are stored in
output order (``position``) and replaced wholesale on refresh.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional, Sequence

from expansion_engine.db.repositories.base import BaseRepository, opt_bool
from expansion_engine.models.candidate import ConfidenceBand
from expansion_engine.models.params import GenerationParameters
from expansion_engine.models.suggestion import (
    Scenario,
    Suggestion,
    SuggestionStatus,
    can_transition,
)
from expansion_engine.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class ScenarioRepository(BaseRepository):
    """Read/write access to ``scenarios`` and ``suggestions``."""

    # ── Scenarios ─────────────────────────────────────────────────────────────

    def create_scenario(
        self,
        name: str,
        parameters: GenerationParameters,
        data_version: str,
        suggestions: Sequence[Suggestion] = (),
    ) -> Scenario:
        """Insert a scenario with its suggestions.

        Args:
            name: Unique scenario name.
            parameters: Parameters the suggestions were generated with.
            data_version: Store-data version stamp.
            suggestions: Suggestions in output order.

        Returns:
            The persisted ``Scenario`` with ``scenario_id`` assigned.

        Raises:
            ValueError: If a scenario with ``name`` already exists.
        """
        if self.get_by_name(name) is not None:
            raise ValueError(f"Scenario '{name}' already exists.")
        created_at = utcnow()
        self.execute(
            """
            INSERT INTO scenarios (name, parameters, data_version, created_at)
            VALUES (?, ?, ?, ?);
            """,
            (name, _params_json(parameters), data_version, created_at.isoformat()),
        )
        scenario_id = self.last_insert_rowid()
        self.replace_suggestions(scenario_id, suggestions)
        logger.info("Created scenario %d '%s' with %d suggestion(s).",
                    scenario_id, name, len(suggestions))
        scenario = self.get_scenario(scenario_id)
        assert scenario is not None
        return scenario

    def get_scenario(self, scenario_id: int) -> Optional[Scenario]:
        row = self.fetchone("SELECT * FROM scenarios WHERE scenario_id = ?;", (scenario_id,))
        if row is None:
            return None
        return _row_to_scenario(row, self.get_suggestions(scenario_id))

    def get_by_name(self, name: str) -> Optional[Scenario]:
        row = self.fetchone("SELECT * FROM scenarios WHERE name = ?;", (name,))
        if row is None:
            return None
        return _row_to_scenario(row, self.get_suggestions(row["scenario_id"]))

    def list_scenarios(self) -> list[Scenario]:
        """All scenarios, newest first, each with its suggestions."""
        rows = self.fetchall("SELECT * FROM scenarios ORDER BY scenario_id DESC;")
        return [_row_to_scenario(r, self.get_suggestions(r["scenario_id"])) for r in rows]

    def update_data_version(self, scenario_id: int, data_version: str) -> None:
        """Stamp a refreshed scenario with its new data version."""
        self.execute(
            """
            UPDATE scenarios SET data_version = ?, updated_at = ?
            WHERE scenario_id = ?;
            """,
            (data_version, utcnow().isoformat(), scenario_id),
        )

    # ── Suggestions ───────────────────────────────────────────────────────────

    def replace_suggestions(self, scenario_id: int, suggestions: Sequence[Suggestion]) -> int:
        """Delete a scenario's suggestions and insert ``suggestions`` in order.

        Returns:
            Number of suggestions written.
        """
        self.execute("DELETE FROM suggestions WHERE scenario_id = ?;", (scenario_id,))
        rows = [
            (
                scenario_id,
                s.suggestion_id,
                position,
                s.lat,
                s.lng,
                s.score,
                s.confidence,
                s.band.value,
                s.rationale,
                s.status.value,
                int(s.selected_by_ai),
                None if s.rationale_quality_ok is None else int(s.rationale_quality_ok),
                s.source,
                s.name,
                s.sub_region,
            )
            for position, s in enumerate(suggestions)
        ]
        if rows:
            self.executemany(
                """
                INSERT INTO suggestions (
                    scenario_id, suggestion_id, position, lat, lng, score,
                    confidence, band, rationale, status, selected_by_ai,
                    rationale_quality_ok, source, name, sub_region
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                rows,
            )
        return len(rows)

    def get_suggestions(self, scenario_id: int) -> list[Suggestion]:
        rows = self.fetchall(
            "SELECT * FROM suggestions WHERE scenario_id = ? ORDER BY position;",
            (scenario_id,),
        )
        return [_row_to_suggestion(r) for r in rows]

    def update_suggestion_status(
        self,
        scenario_id: int,
        suggestion_id: str,
        status: SuggestionStatus,
    ) -> Suggestion:
        """Move one suggestion to ``status`` after human review.

        Raises:
            ValueError: Unknown suggestion, or a transition that is not allowed
                (to ``PENDING``, or to the status it already has).
        """
        row = self.fetchone(
            "SELECT * FROM suggestions WHERE scenario_id = ? AND suggestion_id = ?;",
            (scenario_id, suggestion_id),
        )
        if row is None:
            raise ValueError(
                f"No suggestion '{suggestion_id}' in scenario {scenario_id}."
            )
        current = SuggestionStatus(row["status"])
        if not can_transition(current, status):
            raise ValueError(f"Cannot move suggestion from {current} to {status}.")
        self.execute(
            "UPDATE suggestions SET status = ? WHERE row_id = ?;",
            (status.value, row["row_id"]),
        )
        return _row_to_suggestion(row).model_copy(update={"status": status})


# ── Private helpers ────────────────────────────────────────────────────────────

def _params_json(parameters: GenerationParameters) -> str:
    return json.dumps(parameters.model_dump(mode="json", by_alias=True), sort_keys=True)


def _row_to_scenario(row: sqlite3.Row, suggestions: list[Suggestion]) -> Scenario:
    return Scenario(
        scenario_id=row["scenario_id"],
        name=row["name"],
        parameters=GenerationParameters.model_validate(json.loads(row["parameters"])),
        data_version=row["data_version"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        suggestions=suggestions,
    )


def _row_to_suggestion(row: sqlite3.Row) -> Suggestion:
    return Suggestion(
        suggestion_id=row["suggestion_id"],
        lat=row["lat"],
        lng=row["lng"],
        score=row["score"],
        confidence=row["confidence"],
        band=ConfidenceBand(row["band"]),
        rationale=row["rationale"],
        status=SuggestionStatus(row["status"]),
        scenario_id=row["scenario_id"],
        selected_by_ai=bool(row["selected_by_ai"]),
        rationale_quality_ok=opt_bool(row["rationale_quality_ok"]),
        source=row["source"],
        name=row["name"],
        sub_region=row["sub_region"],
    )
