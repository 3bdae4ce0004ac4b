"""
Provider protocols — the engine's view of its external collaborators.

The engine never talks to a database, a map API or an LLM directly; it is
handed objects satisfying these protocols. Concrete implementations live
beside this module (SQLite / static stores, JSON settlements, Mapbox
tilequery, OpenAI-compatible chat completions) and tests pass in-memory
fakes.

Error contract
--------------
- Settlement, anchor and urban providers raise ``ProviderUnavailableError``;
  the engine degrades that signal to ``unknown`` and carries on.
- LLM providers raise ``AIStrategyError``; the reranker retries or falls back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from expansion_engine.models.region import BoundingBox, RegionFilter
from expansion_engine.models.store import AnchorPoint, ExistingStore, Settlement, UrbanSignals


class StoreSnapshotProvider(Protocol):
    def get_stores(self, region: RegionFilter) -> list[ExistingStore]:
        """Read-only snapshot of open stores relevant to ``region``."""
        ...


class SettlementProvider(Protocol):
    def get_settlements(self, bbox: BoundingBox) -> list[Settlement]:
        """Named places inside ``bbox``."""
        ...


class AnchorProvider(Protocol):
    def get_anchors(self, lat: float, lng: float, radius_m: float) -> list[AnchorPoint]:
        """Points of interest within ``radius_m`` of a point."""
        ...


class UrbanSuitabilityProvider(Protocol):
    def get_signals(self, lat: float, lng: float, timeout: float) -> UrbanSignals:
        """Road / building / land-use signals for one point."""
        ...


@dataclass(frozen=True)
class LLMCompletion:
    """Raw completion returned by an LLM provider.

    Attributes:
        text:          Message content, expected to be JSON.
        tokens_used:   Total tokens reported by the provider (0 if unreported).
        latency_ms:    Wall time of the HTTP call.
        model:         Model name echoed by the provider.
    """

    text: str
    tokens_used: int = 0
    latency_ms: int = 0
    model: Optional[str] = None


class LLMProvider(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        seed: int,
        timeout: float,
    ) -> LLMCompletion:
        """One chat completion; raises ``AIStrategyError`` on failure."""
        ...

