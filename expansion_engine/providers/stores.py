"""
Store snapshot providers.

``StaticStoreProvider`` serves an in-memory list (tests, JSON imports).
``SqliteStoreProvider`` reads the ``stores`` table: for a named region it
loads the region's bounding box padded by ``margin_km`` so stores just
across a border still count for proximity and saturation.
"""

from __future__ import annotations

import logging
from typing import Sequence

from expansion_engine.db.connection import get_connection
from expansion_engine.db.repositories.store_repo import StoreRepository
from expansion_engine.models.region import BoundingBox, RegionFilter
from expansion_engine.models.store import ExistingStore
from expansion_engine.regions import resolve_region
from expansion_engine.utils.geo import (
    lng_span,
    metres_to_lat_degrees,
    metres_to_lng_degrees,
    normalize_lng,
)

logger = logging.getLogger(__name__)


class StaticStoreProvider:
    """Serves a fixed store list regardless of region."""

    def __init__(self, stores: Sequence[ExistingStore]) -> None:
        self._stores = list(stores)

    def get_stores(self, region: RegionFilter) -> list[ExistingStore]:
        return list(self._stores)


def pad_bbox(bbox: BoundingBox, margin_km: float) -> BoundingBox:
    """Grow ``bbox`` by ``margin_km`` on every side (clamped at the poles)."""
    if margin_km <= 0:
        return bbox
    d_lat = metres_to_lat_degrees(margin_km * 1000.0)
    widest_lat = max(abs(bbox.north), abs(bbox.south))
    d_lng = metres_to_lng_degrees(margin_km * 1000.0, widest_lat)
    east, west = bbox.east, bbox.west
    if lng_span(west, east) + 2 * d_lng < 360.0:
        east, west = normalize_lng(east + d_lng), normalize_lng(west - d_lng)
    else:
        east, west = 180.0, -180.0
    return BoundingBox(
        north=min(90.0, bbox.north + d_lat),
        south=max(-90.0, bbox.south - d_lat),
        east=east,
        west=west,
    )


class SqliteStoreProvider:
    """Reads the open-store snapshot from SQLite.

    Args:
        db_path:         Database file.
        margin_km:       Padding around the region box.
        wal_mode:        Passed through to ``get_connection()``.
        busy_timeout_ms: Passed through to ``get_connection()``.
    """

    def __init__(
        self,
        db_path: str,
        margin_km: float = 15.0,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        self.margin_km = margin_km
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def get_stores(self, region: RegionFilter) -> list[ExistingStore]:
        resolved = resolve_region(region)
        with get_connection(self.db_path, self.wal_mode, self.busy_timeout_ms) as conn:
            repo = StoreRepository(conn)
            if resolved is None:
                stores = repo.list_stores()
            else:
                stores = repo.list_in_bbox(pad_bbox(resolved.bbox, self.margin_km))
        logger.info("Loaded %d store(s) for %s.", len(stores), region.label())
        return stores
