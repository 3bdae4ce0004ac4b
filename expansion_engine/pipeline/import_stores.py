"""
Import-stores stage: load a JSON store snapshot into the ``stores`` table.

The file is a JSON list of store objects (``external_ref``, ``lat``,
``lng`` required; ``name``, ``turnover``, ``population_band``, ``country``,
``state``, ``city`` optional). camelCase keys (``externalRef``,
``populationBand``) are accepted too. Rows are upserted by
``external_ref``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from expansion_engine.db.repositories.store_repo import StoreRepository
from expansion_engine.models.meta import RunMetadata
from expansion_engine.models.store import ExistingStore
from expansion_engine.pipeline.base import PipelineStage

logger = logging.getLogger(__name__)

_CAMEL_KEYS = {"externalRef": "external_ref", "populationBand": "population_band"}


def load_store_file(path: Path) -> list[ExistingStore]:
    """Parse a store snapshot JSON file.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the file is not a JSON list or a row is invalid.
    """
    raw: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON list of stores.")
    stores = []
    for item in raw:
        row = {_CAMEL_KEYS.get(k, k): v for k, v in item.items()}
        row.pop("store_id", None)
        stores.append(ExistingStore.model_validate(row))
    return stores


class ImportStoresStage(PipelineStage):
    """Upserts a store snapshot file into SQLite."""

    stage_name = "import_stores"

    def _execute(self, run: RunMetadata, source_path: Path, **kwargs) -> int:
        stores = load_store_file(source_path)
        with self._connect() as conn:
            written = StoreRepository(conn).upsert_stores(stores)
        logger.info("Imported %d of %d store(s) from %s.", written, len(stores), source_path)
        return written
