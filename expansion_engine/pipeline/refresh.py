"""
Refresh stage: regenerate a saved scenario against the current store data.

The scenario's parameters (seed included) are replayed, its suggestions are
replaced and its ``data_version`` is bumped. A suggestion that comes back
with the same id (same seed, same rounded coordinates) keeps the review
status it had before the refresh.
"""

from __future__ import annotations

import logging
from typing import Optional

from expansion_engine.config import AppConfig
from expansion_engine.db.repositories.scenario_repo import ScenarioRepository
from expansion_engine.engine.orchestrator import ExpansionOrchestrator
from expansion_engine.models.meta import RunMetadata
from expansion_engine.models.result import GenerationResult
from expansion_engine.pipeline.base import PipelineStage
from expansion_engine.pipeline.wiring import build_orchestrator

logger = logging.getLogger(__name__)


class RefreshStage(PipelineStage):
    """Replays a scenario's parameters and stores the new suggestions."""

    stage_name = "refresh"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        orchestrator: Optional[ExpansionOrchestrator] = None,
    ) -> None:
        super().__init__(config, db_path)
        self.orchestrator = orchestrator or build_orchestrator(config, self.db_path)
        self.last_result: Optional[GenerationResult] = None

    def _execute(self, run: RunMetadata, scenario_id: int, **kwargs) -> int:
        with self._connect() as conn:
            repo = ScenarioRepository(conn)
            scenario = repo.get_scenario(scenario_id)
            if scenario is None:
                raise ValueError(f"Scenario {scenario_id} not found.")
            run.scenario_id = scenario_id
            run.seed = scenario.parameters.seed

            result = self.orchestrator.refresh(scenario)
            previous = {s.suggestion_id: s.status for s in scenario.suggestions}
            suggestions = [
                s.model_copy(update={
                    "scenario_id": scenario_id,
                    "status": previous.get(s.suggestion_id, s.status),
                })
                for s in result.suggestions
            ]
            repo.replace_suggestions(scenario_id, suggestions)
            repo.update_data_version(scenario_id, result.metadata.data_version)

        kept = sum(1 for s in suggestions if s.suggestion_id in previous)
        logger.info(
            "Refreshed scenario %d: %d suggestion(s), %d carried over.",
            scenario_id, len(suggestions), kept,
        )
        self.last_result = result.model_copy(update={"suggestions": suggestions})
        return len(suggestions)
