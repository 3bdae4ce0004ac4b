"""
Orchestrator: drives iterative candidate expansion and assembles the result.

Usage flow
----------
1.  ``validate(request)``
    → ``GenerationParameters`` + resolved region, or ``InvalidParametersError``
      before anything else runs.
2.  ``generate(request)``
    a. target = explicit ``target_count`` or the aggression mapping
       ``round(min_target + (max_target − min_target) × aggression / 100)``.
    b. pool target = target (no AI) or ``ceil(target × ai_pool_multiplier)``.
    c. Loop: ask the grid for a batch (100, then ×1.5 each iteration),
       extract features, drop constraint rejections, score, then run NMS
       seeded with everything accepted so far. Stop when the pool target is
       met, the grid is exhausted, ``max_candidates_evaluated`` is hit, or
       the deadline passes (checked before every candidate).
    d. Final list: deterministic top-N by score, or the reranker's output
       when AI is enabled.
3.  ``refresh(scenario)`` = ``generate(scenario.parameters)`` tagged with a
    new ``dataVersion``.

Only ``InvalidParametersError`` propagates. Timeouts, candidate caps,
provider outages and AI failures are recovered and reported in metadata.
"""

from __future__ import annotations

import logging
import math
import time
from collections import Counter
from dataclasses import asdict
from typing import Any, Callable, Mapping, Optional

from expansion_engine.config import AppConfig
from expansion_engine.engine.features import FeatureExtractor
from expansion_engine.engine.grid import GridBuilder
from expansion_engine.engine.reranker import RerankOutcome, StoreContext, StrategyReranker
from expansion_engine.engine.scorer import Scorer, reference_turnover
from expansion_engine.engine.suppression import rank_candidates, suppress
from expansion_engine.errors import InvalidParametersError, ProviderUnavailableError
from expansion_engine.models.candidate import ScoredCandidate
from expansion_engine.models.params import GenerationParameters, parse_parameters
from expansion_engine.models.region import BoundingBox
from expansion_engine.models.result import (
    ExpansionStats,
    FeaturesEnabled,
    GenerationMetadata,
    GenerationResult,
    PerformanceMetrics,
)
from expansion_engine.models.store import Settlement, UrbanSignals
from expansion_engine.models.suggestion import Scenario, Suggestion
from expansion_engine.providers.base import (
    AnchorProvider,
    LLMProvider,
    SettlementProvider,
    StoreSnapshotProvider,
    UrbanSuitabilityProvider,
)
from expansion_engine.regions import ResolvedRegion, resolve_region
from expansion_engine.utils.seeding import stable_id
from expansion_engine.utils.time_utils import Clock, Deadline, data_version_stamp

logger = logging.getLogger(__name__)


def target_from_aggression(aggression: float, min_target: int, max_target: int) -> int:
    """Monotonic aggression (0–100) → target suggestion count."""
    return int(round(min_target + (max_target - min_target) * aggression / 100.0))


class _MissingUrbanProvider:
    """Stands in when urban filtering is requested but no provider is configured."""

    def get_signals(self, lat: float, lng: float, timeout: float) -> UrbanSignals:
        raise ProviderUnavailableError("urban", "no urban provider configured")


class ExpansionOrchestrator:
    """Entry point for generation and refresh requests.

    Construct one per process (it holds no per-request state) and call
    ``generate()`` per request.

    Args:
        config:              Application configuration.
        store_provider:      Store snapshot source.
        settlement_provider: Named places; ``None`` → grid candidates only.
        anchor_provider:     POI source; ``None`` → anchors unknown.
        urban_provider:      Urban-suitability source used when a request sets
                             ``enable_mapbox_filtering``.
        llm_provider:        LLM client used when a request sets
                             ``enable_ai_rationale``.
        clock:               Monotonic clock (tests drive timeouts with it).
        sleep:               Sleep used by the reranker backoff.
    """

    def __init__(
        self,
        config: AppConfig,
        store_provider: StoreSnapshotProvider,
        settlement_provider: Optional[SettlementProvider] = None,
        anchor_provider: Optional[AnchorProvider] = None,
        urban_provider: Optional[UrbanSuitabilityProvider] = None,
        llm_provider: Optional[LLMProvider] = None,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.store_provider = store_provider
        self.settlement_provider = settlement_provider
        self.anchor_provider = anchor_provider
        self.urban_provider = urban_provider
        self.llm_provider = llm_provider
        self._clock = clock
        self._sleep = sleep

    # ── Validation ────────────────────────────────────────────────────────────

    def validate(
        self, request: Mapping[str, Any] | GenerationParameters,
    ) -> tuple[GenerationParameters, ResolvedRegion]:
        """Parse and check a request; raises ``InvalidParametersError``."""
        params = parse_parameters(request)
        resolved = resolve_region(params.region)
        if resolved is None:
            raise InvalidParametersError(
                [f"region: cannot resolve '{params.region.label()}' to a known region."]
            )
        return params, resolved

    def target_count(self, params: GenerationParameters) -> int:
        if params.target_count is not None:
            return params.target_count
        exp = self.config.expansion
        return target_from_aggression(params.aggression, exp.min_target, exp.max_target)

    # ── Generation ────────────────────────────────────────────────────────────

    def generate(self, request: Mapping[str, Any] | GenerationParameters) -> GenerationResult:
        """Run the full pipeline for one request.

        Raises:
            InvalidParametersError: Malformed parameters or unknown region.
        """
        params, resolved = self.validate(request)
        exp = self.config.expansion
        deadline = Deadline(params.timeout_ms or exp.timeout_ms, clock=self._clock)
        target = self.target_count(params)
        max_evaluated = params.max_candidates_evaluated or exp.max_candidates_evaluated
        ai_enabled = params.enable_ai_rationale
        pool_target = math.ceil(target * exp.ai_pool_multiplier) if ai_enabled else target
        notes: list[str] = []

        logger.info(
            "Generate | region=%s seed=%d target=%d pool_target=%d ai=%s urban=%s",
            resolved.label, params.seed, target, pool_target,
            ai_enabled, params.enable_mapbox_filtering,
        )

        stores = self.store_provider.get_stores(params.region)
        settlements = self._load_settlements(resolved.bbox, notes)
        grid = GridBuilder(resolved.bbox, stores, settlements, params.seed, self.config.grid)

        urban: Optional[UrbanSuitabilityProvider] = None
        if params.enable_mapbox_filtering:
            urban = self.urban_provider
            if urban is None:
                notes.append("Urban filtering requested but no provider is configured; "
                             "urban signals are unknown.")
                urban = _MissingUrbanProvider()
        extractor = FeatureExtractor(
            stores,
            settlements,
            self.config.features,
            min_distance_m=params.min_distance_m,
            anchor_provider=self.anchor_provider,
            urban_provider=urban,
            urban_timeout_seconds=self.config.urban.request_timeout_seconds,
        )
        scorer = Scorer(
            (params.population_bias, params.proximity_bias, params.turnover_bias),
            reference_turnover(stores, self.config.scoring),
            self.config.scoring,
        )

        # ── Expansion loop ────────────────────────────────────────────────────
        accepted: list[ScoredCandidate] = []
        rejections: Counter[str] = Counter()
        evaluated = 0
        scored = 0
        iterations = 0
        timeout_reached = False
        max_reached = False
        exhausted = False
        batch_size = exp.initial_batch_size

        while len(accepted) < pool_target:
            if deadline.expired():
                timeout_reached = True
                break
            remaining_cap = max_evaluated - evaluated
            if remaining_cap <= 0:
                max_reached = True
                break
            batch = grid.next_batch(min(batch_size, remaining_cap))
            if not batch:
                exhausted = True
                break
            iterations += 1

            batch_scored: list[ScoredCandidate] = []
            for point in batch:
                if deadline.expired():
                    timeout_reached = True
                    break
                urban_timeout = deadline.call_timeout(
                    self.config.urban.request_timeout_seconds, exp.provider_budget_fraction
                )
                features = extractor.extract(point, urban_timeout=urban_timeout)
                evaluated += 1
                if features.rejected:
                    rejections.update(features.rejection_reasons)
                    continue
                batch_scored.append(scorer.score(point, features))

            scored += len(batch_scored)
            nms = suppress(
                batch_scored,
                params.min_distance_m,
                limit=pool_target - len(accepted),
                fixed=accepted,
            )
            accepted.extend(nms.accepted)
            if nms.suppressed:
                rejections["nms_suppressed"] += len(nms.suppressed)
            if nms.truncated:
                rejections["pool_full"] += len(nms.truncated)

            logger.debug(
                "Iteration %d | batch=%d evaluated=%d accepted=%d",
                iterations, len(batch), evaluated, len(accepted),
            )
            if timeout_reached:
                break
            batch_size = math.ceil(batch_size * exp.batch_growth_factor)

        if iterations == 0 and exhausted:
            return self._no_region_result(params, resolved, deadline, target, notes)

        # ── Final selection ───────────────────────────────────────────────────
        rerank: Optional[RerankOutcome] = None
        if ai_enabled:
            reranker = StrategyReranker(self.llm_provider, self.config.ai, sleep=self._sleep)
            rerank = reranker.rerank(
                accepted,
                target,
                params.seed,
                StoreContext.from_stores(stores),
                deadline=deadline,
                budget_fraction=exp.provider_budget_fraction,
            )
            final = rerank.selected
            if not rerank.outcome.selected_by_ai:
                notes.append(
                    f"AI rerank fell back to deterministic selection "
                    f"({rerank.outcome.fallback_reason})."
                )
        else:
            final = rank_candidates(accepted)[:target]

        if timeout_reached:
            notes.append("Timeout reached; returning suggestions accepted so far.")
        if max_reached:
            notes.append(f"Candidate cap of {max_evaluated} reached.")
        if exhausted and len(final) < target:
            notes.append("Region exhausted before the target count was reached.")
        if extractor.provider_errors:
            notes.append(f"{extractor.provider_errors} provider call(s) failed; "
                         "affected signals are unknown.")

        suggestions = [self._to_suggestion(c, params) for c in final]
        elapsed = deadline.elapsed_seconds
        status = "partial" if (timeout_reached or max_reached or len(final) < target) else "ok"

        performance = None
        if params.enable_diagnostics or ai_enabled:
            performance = PerformanceMetrics(
                candidates_per_second=round(evaluated / elapsed, 2) if elapsed > 0 else 0.0,
                openai_api_calls=rerank.api_calls if rerank else 0,
                openai_tokens_used=rerank.tokens_used if rerank else 0,
                openai_errors=rerank.errors if rerank else 0,
                openai_response_time_ms=rerank.response_time_ms if rerank else 0,
                provider_calls=extractor.provider_calls,
                provider_errors=extractor.provider_errors,
                provider_calls_skipped=extractor.provider_calls_skipped,
            )

        total_accepted = len(accepted)
        metadata = GenerationMetadata(
            status=status,
            region=resolved.label,
            seed=params.seed,
            target_count=target,
            total_cells_scored=scored,
            avg_confidence=(
                round(sum(s.confidence for s in suggestions) / len(suggestions), 4)
                if suggestions else 0.0
            ),
            generation_time_ms=deadline.elapsed_ms,
            expansion_stats=ExpansionStats(
                iterations=iterations,
                total_evaluated=evaluated,
                total_accepted=total_accepted,
                total_rejected=evaluated - total_accepted,
                acceptance_rate=round(total_accepted / evaluated, 4) if evaluated else 0.0,
                timeout_reached=timeout_reached,
                max_candidates_reached=max_reached,
            ),
            rejection_reasons=dict(sorted(rejections.items())),
            features_enabled=FeaturesEnabled(
                mapbox_filtering=params.enable_mapbox_filtering,
                ai_rationale=bool(rerank and rerank.outcome.selected_by_ai),
                ai_rationale_requested=ai_enabled,
                diagnostics=params.enable_diagnostics,
            ),
            mixing_stats=grid.mixing_stats(),
            performance_metrics=performance,
            ai_outcome=rerank.outcome if rerank else None,
            notes=notes,
        )

        logger.info(
            "Generate done | status=%s suggestions=%d evaluated=%d iterations=%d time_ms=%d",
            status, len(suggestions), evaluated, iterations, metadata.generation_time_ms,
        )
        return GenerationResult(suggestions=suggestions, metadata=metadata)

    def refresh(self, scenario: Scenario) -> GenerationResult:
        """Regenerate a saved scenario against current data.

        The scenario itself is not modified; persisting the new result is the
        caller's job.
        """
        params = scenario.parameters
        if scenario.scenario_id is not None and params.scenario_id != scenario.scenario_id:
            params = params.model_copy(update={"scenario_id": scenario.scenario_id})
        result = self.generate(params)
        metadata = result.metadata.model_copy(update={"data_version": data_version_stamp()})
        return result.model_copy(update={"metadata": metadata})

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _load_settlements(self, bbox: BoundingBox, notes: list[str]) -> list[Settlement]:
        if self.settlement_provider is None:
            return []
        try:
            return self.settlement_provider.get_settlements(bbox)
        except ProviderUnavailableError as exc:
            logger.warning("Settlement data unavailable: %s", exc)
            notes.append("Settlement data unavailable; using grid candidates only.")
            return []

    def _to_suggestion(self, c: ScoredCandidate, params: GenerationParameters) -> Suggestion:
        diagnostics = None
        if params.enable_diagnostics:
            diagnostics = {
                "candidate_id": c.candidate_id,
                "density_band": c.point.density_band,
                "cell_size_m": c.point.cell_size_m,
                "features": asdict(c.features),
                "signal_states": c.features.signal_states(),
                "components": asdict(c.components),
            }
        return Suggestion(
            suggestion_id=stable_id("sug", params.seed, c.lat, c.lng),
            lat=c.lat,
            lng=c.lng,
            score=c.score,
            confidence=c.confidence,
            band=c.band,
            rationale=c.rationale,
            scenario_id=params.scenario_id,
            selected_by_ai=c.selected_by_ai,
            rationale_quality_ok=c.rationale_quality_ok,
            source=c.point.source,
            name=c.point.name,
            sub_region=c.sub_region,
            diagnostics=diagnostics,
        )

    def _no_region_result(
        self,
        params: GenerationParameters,
        resolved: ResolvedRegion,
        deadline: Deadline,
        target: int,
        notes: list[str],
    ) -> GenerationResult:
        notes.append(f"No candidate cells could be generated for {resolved.label}.")
        logger.warning("Generate | no region data for %s", resolved.label)
        return GenerationResult(
            suggestions=[],
            metadata=GenerationMetadata(
                status="no_region_data",
                region=resolved.label,
                seed=params.seed,
                target_count=target,
                generation_time_ms=deadline.elapsed_ms,
                features_enabled=FeaturesEnabled(
                    mapbox_filtering=params.enable_mapbox_filtering,
                    ai_rationale_requested=params.enable_ai_rationale,
                    diagnostics=params.enable_diagnostics,
                ),
                notes=notes,
            ),
        )
