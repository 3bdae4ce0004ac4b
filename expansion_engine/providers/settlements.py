"""
Settlement (named place) providers.

The JSON file is a list of objects::

    [{"name": "München", "state": "Bayern", "country": "Germany",
      "lat": 48.137, "lng": 11.575, "population": 1512491}, ...]

``JsonSettlementProvider`` loads it lazily once and filters by bounding box.
A missing or malformed file raises ``ProviderUnavailableError`` so the
orchestrator falls back to grid-only candidates.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from expansion_engine.errors import ProviderUnavailableError
from expansion_engine.models.region import BoundingBox
from expansion_engine.models.store import Settlement

logger = logging.getLogger(__name__)


def _in_bbox(settlements: Sequence[Settlement], bbox: BoundingBox) -> list[Settlement]:
    return [s for s in settlements if bbox.contains(s.lat, s.lng)]


class StaticSettlementProvider:
    """Serves a fixed settlement list, filtered by bounding box."""

    def __init__(self, settlements: Sequence[Settlement]) -> None:
        self._settlements = list(settlements)

    def get_settlements(self, bbox: BoundingBox) -> list[Settlement]:
        return _in_bbox(self._settlements, bbox)


class JsonSettlementProvider:
    """Settlements read from a JSON file.

    Args:
        path: Path to the settlements JSON list.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._cache: Optional[list[Settlement]] = None

    def _load(self) -> list[Settlement]:
        if self._cache is not None:
            return self._cache
        if not self.path.exists():
            raise ProviderUnavailableError("settlements", f"file not found: {self.path}")
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ProviderUnavailableError(
                    "settlements", f"{self.path} must contain a JSON list"
                )
            self._cache = [Settlement.model_validate(item) for item in raw]
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ProviderUnavailableError("settlements", f"bad data in {self.path}: {exc}") from exc
        logger.debug("Loaded %d settlement(s) from %s.", len(self._cache), self.path)
        return self._cache

    def get_settlements(self, bbox: BoundingBox) -> list[Settlement]:
        return _in_bbox(self._load(), bbox)
