"""
Builds an ``ExpansionOrchestrator`` with the concrete providers the
configuration calls for.

    stores       SQLite ``stores`` table
    settlements  ``data.settlements_file`` (JSON)
    anchors      ``data.anchors_file`` (JSON), optional
    urban        Mapbox tilequery, only when a token is configured
    LLM          OpenAI-compatible endpoint, only when an API key is configured

A request asking for urban filtering or AI rationale without the matching
credential still succeeds; the orchestrator reports the missing provider
in the result notes / AI outcome.
"""

from __future__ import annotations

import logging
from typing import Optional

from expansion_engine.config import AppConfig, resolve_data_path
from expansion_engine.engine.orchestrator import ExpansionOrchestrator
from expansion_engine.errors import ProviderUnavailableError
from expansion_engine.providers.anchors import StaticAnchorProvider
from expansion_engine.providers.llm_client import OpenAICompatibleClient
from expansion_engine.providers.settlements import JsonSettlementProvider
from expansion_engine.providers.stores import SqliteStoreProvider
from expansion_engine.providers.urban_client import MapboxUrbanClient

logger = logging.getLogger(__name__)


def build_orchestrator(config: AppConfig, db_path: Optional[str] = None) -> ExpansionOrchestrator:
    """Wire providers from ``config`` into an orchestrator."""
    anchors = None
    if config.data.anchors_file:
        try:
            anchors = StaticAnchorProvider.from_json(resolve_data_path(config.data.anchors_file))
        except ProviderUnavailableError as exc:
            logger.warning("Anchors disabled: %s", exc)

    urban = MapboxUrbanClient(config.urban) if config.urban.mapbox_token else None
    llm = OpenAICompatibleClient(config.ai) if config.ai.api_key else None

    return ExpansionOrchestrator(
        config,
        store_provider=SqliteStoreProvider(
            db_path or config.database.db_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        ),
        settlement_provider=JsonSettlementProvider(
            resolve_data_path(config.data.settlements_file)
        ),
        anchor_provider=anchors,
        urban_provider=urban,
        llm_provider=llm,
    )
