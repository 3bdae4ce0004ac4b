"""
Region selection models.

A ``RegionFilter`` selects geography in exactly one of two modes:
  - named: ``country`` and/or ``state`` (resolved by ``expansion_engine.regions``)
  - explicit: ``bbox`` (north/south/east/west in degrees)

``BoundingBox`` allows ``east < west`` for boxes that cross the antimeridian;
``east == west`` is degenerate and rejected.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from expansion_engine.utils.geo import bbox_area_km2, lng_in_span, lng_span


class BoundingBox(BaseModel):
    """Lat/lng bounding box in degrees."""

    model_config = ConfigDict(frozen=True)

    north: float
    south: float
    east: float
    west: float

    @model_validator(mode="after")
    def validate_box(self) -> "BoundingBox":
        for name in ("north", "south"):
            v = getattr(self, name)
            if not -90.0 <= v <= 90.0:
                raise ValueError(f"{name} must be in [-90, 90], got {v}.")
        for name in ("east", "west"):
            v = getattr(self, name)
            if not -180.0 <= v <= 180.0:
                raise ValueError(f"{name} must be in [-180, 180], got {v}.")
        if self.north <= self.south:
            raise ValueError(
                f"north ({self.north}) must be greater than south ({self.south})."
            )
        if lng_span(self.west, self.east) == 0.0:
            raise ValueError(f"east/west span is degenerate (east == west == {self.east}).")
        return self

    @property
    def area_km2(self) -> float:
        return bbox_area_km2(self.north, self.south, self.east, self.west)

    @property
    def center(self) -> tuple[float, float]:
        lat = (self.north + self.south) / 2.0
        lng = self.west + lng_span(self.west, self.east) / 2.0
        if lng >= 180.0:
            lng -= 360.0
        return lat, lng

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and lng_in_span(lng, self.west, self.east)


class RegionFilter(BaseModel):
    """Geographic selection for one generation request."""

    model_config = ConfigDict(frozen=True)

    country: Optional[str] = None
    state: Optional[str] = None
    bbox: Optional[BoundingBox] = None

    @model_validator(mode="after")
    def validate_single_mode(self) -> "RegionFilter":
        named = bool((self.country or "").strip() or (self.state or "").strip())
        if named and self.bbox is not None:
            raise ValueError("Region filter must be either named (country/state) or bbox, not both.")
        if not named and self.bbox is None:
            raise ValueError("Region filter is empty: set country/state or bbox.")
        return self

    @property
    def is_named(self) -> bool:
        return self.bbox is None

    def label(self) -> str:
        if self.bbox is not None:
            b = self.bbox
            return f"bbox({b.north:.4f},{b.south:.4f},{b.east:.4f},{b.west:.4f})"
        parts = [p for p in (self.state, self.country) if p]
        return ", ".join(parts)
