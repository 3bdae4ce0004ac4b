"""
Anchor (point-of-interest) providers.

Anchors are optional: without a provider the anchor signal is ``unknown``.
``StaticAnchorProvider`` answers radius queries over an in-memory list,
optionally loaded from a JSON list of ``{"lat", "lng", "kind"}`` objects.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from expansion_engine.errors import ProviderUnavailableError
from expansion_engine.models.store import AnchorPoint
from expansion_engine.utils.geo import haversine_m


class StaticAnchorProvider:
    """Radius lookups over a fixed list of anchors."""

    def __init__(self, anchors: Sequence[AnchorPoint]) -> None:
        self._anchors = list(anchors)

    @classmethod
    def from_json(cls, path: str | Path) -> "StaticAnchorProvider":
        """Load anchors from a JSON list.

        Raises:
            ProviderUnavailableError: Missing or malformed file.
        """
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return cls([AnchorPoint.model_validate(item) for item in raw])
        except (OSError, json.JSONDecodeError, TypeError, ValidationError) as exc:
            raise ProviderUnavailableError("anchors", f"cannot load {path}: {exc}") from exc

    def get_anchors(self, lat: float, lng: float, radius_m: float) -> list[AnchorPoint]:
        hits = [(haversine_m(lat, lng, a.lat, a.lng), a) for a in self._anchors]
        hits.sort(key=lambda h: (h[0], h[1].lat, h[1].lng))
        return [a for d, a in hits if d <= radius_m]
