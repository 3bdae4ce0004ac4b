"""
Strategy reranker: LLM-assisted selection with retry, fallback and guardrails.

State machine
-------------
    NOT_ATTEMPTED → CALLING → SUCCESS
                            → RETRY → CALLING ...      (rate_limit / transient api_failure)
                            → EXHAUSTED → FALLBACK      (attempts or deadline used up)
                            → FALLBACK                  (non-retryable error, bad response)
                      RETRY → EXHAUSTED → FALLBACK      (no time left for the next call)
                    SUCCESS → FALLBACK                  (consistency guardrail failed)
    NOT_ATTEMPTED → FALLBACK                            (no time left for a first call)

Every state visited is recorded in ``AIOutcome.transitions``.

Retry ladder
------------
Up to ``max_attempts`` calls. Before attempt *n + 1* the reranker sleeps
``backoff_base_seconds × 2^(n − 1)`` (2 s, 4 s, 8 s ...). A backoff that would
run past the request deadline ends the ladder instead.

Response schema
---------------
    {"selected": [{"candidate_id": "...", "rationale": "..."}], "summary": "..."}

Unknown ids are dropped, duplicates removed, the list truncated to the
target. Shortfalls are filled from the deterministic order with
``selected_by_ai=False``. No valid id at all → ``invalid_response``.

Guardrails (run on every parsed response)
-----------------------------------------
- balance:     one sub-region holding > ``balance_max_share`` of AI picks is
               logged as a warning; the selection is kept.
- rationale:   shorter than ``min_rationale_chars`` or missing every keyword
               → ``rationale_quality_ok=False`` on that suggestion.
- consistency: overlap with the deterministic top-N below
               ``min_overlap_ratio``, or AI mean score below
               ``min_score_ratio`` × deterministic mean → response discarded,
               deterministic fallback used.

The reranker is stateless between calls; token usage, call counts, errors
and latency are returned in ``RerankOutcome``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Callable, Optional, Sequence

from expansion_engine.config import AIConfig
from expansion_engine.errors import AIStrategyError
from expansion_engine.models.candidate import ScoredCandidate
from expansion_engine.models.result import AIOutcome, GuardrailReport
from expansion_engine.models.store import ExistingStore
from expansion_engine.providers.base import LLMProvider
from expansion_engine.engine.suppression import rank_candidates
from expansion_engine.utils.time_utils import Deadline

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a retail expansion strategist. You receive scored candidate "
    "locations for new stores and context about the existing network. Select "
    "exactly the requested number of candidates that best balance population, "
    "anchor density, market gap and peer performance. Use only candidate_id "
    "values from the input. Respond with JSON only, in the form "
    '{"selected": [{"candidate_id": "...", "rationale": "..."}], "summary": "..."}. '
    "Each rationale must cite the numbers it relies on."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class RerankState(StrEnum):
    NOT_ATTEMPTED = "NOT_ATTEMPTED"
    CALLING = "CALLING"
    RETRY = "RETRY"
    SUCCESS = "SUCCESS"
    EXHAUSTED = "EXHAUSTED"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class StoreContext:
    """Existing-network summary passed to the LLM."""

    store_count: int
    mean_turnover: Optional[float]
    stores_by_sub_region: dict[str, int]

    @classmethod
    def from_stores(cls, stores: Sequence[ExistingStore]) -> "StoreContext":
        turnovers = [s.turnover for s in stores if s.turnover is not None]
        by_region = Counter(s.state or "unknown" for s in stores)
        return cls(
            store_count=len(stores),
            mean_turnover=round(sum(turnovers) / len(turnovers), 2) if turnovers else None,
            stores_by_sub_region=dict(sorted(by_region.items())),
        )


@dataclass(frozen=True)
class AISelection:
    """Validated LLM picks, in the LLM's order."""

    picks: list[tuple[str, str]]
    summary: Optional[str] = None


@dataclass
class RerankOutcome:
    """Final selection plus accounting for the orchestrator's metadata."""

    selected: list[ScoredCandidate]
    outcome: AIOutcome
    api_calls: int = 0
    tokens_used: int = 0
    errors: int = 0
    response_time_ms: int = 0


@dataclass
class _Run:
    """Mutable bookkeeping for one ``rerank()`` call."""

    transitions: list[str] = field(default_factory=lambda: [RerankState.NOT_ATTEMPTED.value])
    api_calls: int = 0
    tokens_used: int = 0
    errors: int = 0
    response_time_ms: int = 0
    error_kind: Optional[str] = None

    def enter(self, state: RerankState) -> None:
        self.transitions.append(state.value)

    @property
    def state(self) -> str:
        return self.transitions[-1]


# ── Prompt & parsing ───────────────────────────────────────────────────────────


def build_user_prompt(
    pool: Sequence[ScoredCandidate], target: int, context: StoreContext,
) -> str:
    """Deterministic JSON prompt body (sorted keys, pool in score order)."""
    candidates = []
    for c in rank_candidates(pool):
        f = c.features
        candidates.append({
            "candidate_id": c.candidate_id,
            "lat": round(c.lat, 5),
            "lng": round(c.lng, 5),
            "score": c.score,
            "confidence": c.confidence,
            "sub_region": c.sub_region,
            "name": c.point.name,
            "population": f.population,
            "nearest_store_m": f.nearest_store_m,
            "stores_within_5km": f.stores_within_5km,
            "anchor_count": f.anchor_count,
            "peer_performance": f.peer_performance,
        })
    body = {
        "target_count": target,
        "existing_stores": {
            "count": context.store_count,
            "mean_turnover": context.mean_turnover,
            "by_sub_region": context.stores_by_sub_region,
        },
        "candidates": candidates,
    }
    return json.dumps(body, sort_keys=True, ensure_ascii=False)


def parse_selection(text: str, known_ids: set[str], target: int) -> AISelection:
    """Parse and validate an LLM response against the selection schema.

    Raises:
        AIStrategyError: ``parsing_error`` for non-JSON text,
            ``invalid_response`` for schema violations or no valid ids.
    """
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AIStrategyError("parsing_error", f"Response is not JSON: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("selected"), list):
        raise AIStrategyError("invalid_response", "Response has no 'selected' list.")

    picks: list[tuple[str, str]] = []
    seen: set[str] = set()
    for item in data["selected"]:
        if not isinstance(item, dict):
            continue
        cid = item.get("candidate_id")
        if not isinstance(cid, str) or cid not in known_ids or cid in seen:
            continue
        rationale = item.get("rationale")
        seen.add(cid)
        picks.append((cid, rationale.strip() if isinstance(rationale, str) else ""))

    if not picks:
        raise AIStrategyError("invalid_response", "Response selected no known candidate ids.")

    summary = data.get("summary")
    return AISelection(
        picks=picks[:target],
        summary=summary if isinstance(summary, str) else None,
    )


# ── Guardrails ─────────────────────────────────────────────────────────────────


def rationale_ok(rationale: str, config: AIConfig) -> bool:
    if len(rationale) < config.min_rationale_chars:
        return False
    lowered = rationale.lower()
    return any(k.lower() in lowered for k in config.rationale_keywords)


def evaluate_guardrails(
    ai_picks: Sequence[ScoredCandidate],
    deterministic: Sequence[ScoredCandidate],
    config: AIConfig,
) -> GuardrailReport:
    """Balance, rationale and consistency checks on the AI's own picks."""
    regions = Counter(c.sub_region for c in ai_picks if c.sub_region)
    dominant, share = None, 0.0
    if regions and ai_picks:
        dominant, count = sorted(regions.items(), key=lambda kv: (-kv[1], kv[0]))[0]
        share = count / len(ai_picks)

    det_ids = {c.candidate_id for c in deterministic}
    overlap = (
        sum(1 for c in ai_picks if c.candidate_id in det_ids) / len(ai_picks)
        if ai_picks else 0.0
    )
    det_mean = sum(c.score for c in deterministic) / len(deterministic) if deterministic else 0.0
    ai_mean = sum(c.score for c in ai_picks) / len(ai_picks) if ai_picks else 0.0
    score_ratio = ai_mean / det_mean if det_mean > 0 else 1.0

    return GuardrailReport(
        balance_ok=share <= config.balance_max_share,
        dominant_sub_region=dominant,
        max_sub_region_share=round(share, 4),
        low_quality_rationales=sum(1 for c in ai_picks if c.rationale_quality_ok is False),
        overlap_ratio=round(overlap, 4),
        score_ratio=round(score_ratio, 4),
        consistency_ok=(
            overlap >= config.min_overlap_ratio and score_ratio >= config.min_score_ratio
        ),
    )


# ── Reranker ───────────────────────────────────────────────────────────────────


class StrategyReranker:
    """Runs one LLM selection over a candidate pool.

    Args:
        provider: LLM provider, or ``None`` when no client is configured.
        config:   AI configuration (retry ladder and guardrail thresholds).
        sleep:    Sleep function; injected by tests.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider],
        config: AIConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.config = config
        self._sleep = sleep

    def rerank(
        self,
        pool: Sequence[ScoredCandidate],
        target: int,
        seed: int,
        context: StoreContext,
        deadline: Optional[Deadline] = None,
        budget_fraction: float = 0.5,
    ) -> RerankOutcome:
        """Select ``target`` candidates from ``pool``.

        Never raises for provider problems: every failure path ends in the
        deterministic top-N with ``selected_by_ai=False``.
        """
        deterministic = rank_candidates(pool)[:target]
        run = _Run()

        if not pool or target <= 0:
            return self._fallback(run, deterministic, "empty_pool")
        if self.provider is None:
            return self._fallback(run, deterministic, "provider_unavailable")

        user_prompt = build_user_prompt(pool, target, context)
        completion_text: Optional[str] = None

        for attempt in range(1, self.config.max_attempts + 1):
            timeout = (
                deadline.call_timeout(self.config.request_timeout_seconds, budget_fraction)
                if deadline is not None else self.config.request_timeout_seconds
            )
            if timeout <= 0:
                if run.api_calls:
                    run.enter(RerankState.EXHAUSTED)
                return self._fallback(run, deterministic, "deadline")

            run.enter(RerankState.CALLING)
            run.api_calls += 1
            try:
                completion = self.provider.complete(SYSTEM_PROMPT, user_prompt, seed, timeout)
            except AIStrategyError as exc:
                run.errors += 1
                run.error_kind = exc.kind
                logger.warning("AI rerank attempt %d/%d failed: %s",
                               attempt, self.config.max_attempts, exc)
                if not exc.retryable:
                    return self._fallback(run, deterministic, exc.kind)
                if attempt == self.config.max_attempts:
                    run.enter(RerankState.EXHAUSTED)
                    return self._fallback(run, deterministic, "retries_exhausted")
                delay = self.config.backoff_base_seconds * (2 ** (attempt - 1))
                if deadline is not None and delay >= deadline.remaining_seconds:
                    run.enter(RerankState.EXHAUSTED)
                    return self._fallback(run, deterministic, "deadline")
                run.enter(RerankState.RETRY)
                self._sleep(delay)
                continue

            run.tokens_used += completion.tokens_used
            run.response_time_ms += completion.latency_ms
            completion_text = completion.text
            break

        try:
            selection = parse_selection(
                completion_text or "", {c.candidate_id for c in pool}, target
            )
        except AIStrategyError as exc:
            run.errors += 1
            run.error_kind = exc.kind
            logger.warning("AI rerank response rejected: %s", exc)
            return self._fallback(run, deterministic, exc.kind)

        run.enter(RerankState.SUCCESS)
        return self._apply_selection(run, pool, deterministic, selection, target)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _apply_selection(
        self,
        run: _Run,
        pool: Sequence[ScoredCandidate],
        deterministic: list[ScoredCandidate],
        selection: AISelection,
        target: int,
    ) -> RerankOutcome:
        by_id = {c.candidate_id: c for c in pool}
        ai_picks = [
            replace(
                by_id[cid],
                rationale=rationale or None,
                rationale_quality_ok=rationale_ok(rationale, self.config),
                selected_by_ai=True,
            )
            for cid, rationale in selection.picks
        ]
        report = evaluate_guardrails(ai_picks, deterministic, self.config)

        if not report.balance_ok:
            logger.warning(
                "AI selection unbalanced: %.0f%% in %s (max %.0f%%)",
                report.max_sub_region_share * 100, report.dominant_sub_region,
                self.config.balance_max_share * 100,
            )
        if report.low_quality_rationales:
            logger.warning("AI selection: %d low-quality rationale(s)", report.low_quality_rationales)

        if not report.consistency_ok:
            logger.warning(
                "AI selection discarded: overlap=%.2f score_ratio=%.2f",
                report.overlap_ratio, report.score_ratio,
            )
            return self._fallback(run, deterministic, "consistency_guardrail", report, selection)

        chosen = {c.candidate_id for c in ai_picks}
        shortfall = max(0, target - len(ai_picks))
        fill = [c for c in rank_candidates(pool) if c.candidate_id not in chosen][:shortfall]

        logger.info(
            "AI rerank succeeded | ai_picks=%d filled=%d calls=%d tokens=%d",
            len(ai_picks), len(fill), run.api_calls, run.tokens_used,
        )
        return RerankOutcome(
            selected=ai_picks + fill,
            outcome=AIOutcome(
                state=run.state,
                transitions=list(run.transitions),
                attempts=run.api_calls,
                selected_by_ai=True,
                error_kind=run.error_kind,
                summary=selection.summary,
                ai_selected_count=len(ai_picks),
                guardrails=report,
            ),
            api_calls=run.api_calls,
            tokens_used=run.tokens_used,
            errors=run.errors,
            response_time_ms=run.response_time_ms,
        )

    def _fallback(
        self,
        run: _Run,
        deterministic: list[ScoredCandidate],
        reason: str,
        report: Optional[GuardrailReport] = None,
        selection: Optional[AISelection] = None,
    ) -> RerankOutcome:
        run.enter(RerankState.FALLBACK)
        logger.info("AI rerank fallback (%s) | calls=%d", reason, run.api_calls)
        return RerankOutcome(
            selected=list(deterministic),
            outcome=AIOutcome(
                state=run.state,
                transitions=list(run.transitions),
                attempts=run.api_calls,
                selected_by_ai=False,
                error_kind=run.error_kind,
                fallback_reason=reason,
                summary=selection.summary if selection else None,
                guardrails=report,
            ),
            api_calls=run.api_calls,
            tokens_used=run.tokens_used,
            errors=run.errors,
            response_time_ms=run.response_time_ms,
        )
