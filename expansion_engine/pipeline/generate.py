"""
Generate stage: one orchestrator request, optionally saved as a scenario.

``run(request=..., save_as=None, output_dir=None)``:
  1. ``orchestrator.generate(request)`` (``InvalidParametersError`` fails the run).
  2. ``save_as`` set → persist a new scenario with the suggestions; the run
     record's ``scenario_id`` points at it.
  3. ``output_dir`` set → write the JSON and CSV reports.

The result is kept on ``last_result`` (and report paths on
``last_outputs``) for the caller.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from expansion_engine.config import AppConfig
from expansion_engine.db.repositories.scenario_repo import ScenarioRepository
from expansion_engine.engine.orchestrator import ExpansionOrchestrator
from expansion_engine.models.meta import RunMetadata
from expansion_engine.models.params import GenerationParameters
from expansion_engine.models.result import GenerationResult
from expansion_engine.pipeline.base import PipelineStage
from expansion_engine.pipeline.wiring import build_orchestrator
from expansion_engine.reporting.export import write_generation_json, write_suggestions_csv
from expansion_engine.utils.time_utils import data_version_stamp

logger = logging.getLogger(__name__)


class GenerateStage(PipelineStage):
    """Runs one generation request.

    Args:
        config:       Application configuration.
        db_path:      Database path override.
        orchestrator: Pre-built orchestrator (tests inject fakes); built
                      from ``config`` when omitted.
    """

    stage_name = "generate"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        orchestrator: Optional[ExpansionOrchestrator] = None,
    ) -> None:
        super().__init__(config, db_path)
        self.orchestrator = orchestrator or build_orchestrator(config, self.db_path)
        self.last_result: Optional[GenerationResult] = None
        self.last_outputs: list[Path] = []

    def _execute(
        self,
        run: RunMetadata,
        request: Mapping[str, Any] | GenerationParameters,
        save_as: Optional[str] = None,
        output_dir: Optional[Path] = None,
        **kwargs,
    ) -> int:
        params, _ = self.orchestrator.validate(request)
        run.seed = params.seed

        result = self.orchestrator.generate(params)
        version = data_version_stamp()
        result = result.model_copy(
            update={"metadata": result.metadata.model_copy(update={"data_version": version})}
        )

        if save_as:
            with self._connect() as conn:
                scenario = ScenarioRepository(conn).create_scenario(
                    save_as, params, version, result.suggestions,
                )
            run.scenario_id = scenario.scenario_id
            result = result.model_copy(update={"suggestions": scenario.suggestions})
            logger.info("Saved scenario %d '%s'.", scenario.scenario_id, save_as)

        self.last_outputs = []
        if output_dir is not None:
            label = save_as or result.metadata.region
            self.last_outputs = [
                write_generation_json(result, output_dir, label),
                write_suggestions_csv(result, output_dir, label),
            ]

        self.last_result = result
        return len(result.suggestions)
