"""
Reference-data models consumed (read-only) by the scoring pipeline.

``ExistingStore`` is one row of the store snapshot. ``Settlement`` is a named
place with a population estimate. ``AnchorPoint`` is a point of interest and
``UrbanSignals`` is what an urban-suitability provider returns for one point;
every urban field is optional because providers answer partially.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


def _check_coordinates(lat: float, lng: float) -> None:
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"lat must be in [-90, 90], got {lat}.")
    if not -180.0 <= lng <= 180.0:
        raise ValueError(f"lng must be in [-180, 180], got {lng}.")


class ExistingStore(BaseModel):
    """An open store in the snapshot.

    Attributes:
        store_id:        DB PK; ``None`` for in-memory snapshots.
        external_ref:    Upstream identifier (unique when present).
        name:            Display name.
        lat, lng:        Coordinates in degrees.
        turnover:        Annual turnover, or ``None`` when unknown.
        population_band: Optional coarse population band label.
        country, state, city: Administrative labels used for region filtering.
    """

    model_config = ConfigDict(frozen=True)

    store_id: Optional[int] = None
    external_ref: Optional[str] = None
    name: str = ""
    lat: float
    lng: float
    turnover: Optional[float] = None
    population_band: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None

    @model_validator(mode="after")
    def validate_store(self) -> "ExistingStore":
        _check_coordinates(self.lat, self.lng)
        if self.turnover is not None and self.turnover < 0:
            raise ValueError(f"turnover must be non-negative, got {self.turnover}.")
        return self


class Settlement(BaseModel):
    """A named place with a population estimate."""

    model_config = ConfigDict(frozen=True)

    name: str
    lat: float
    lng: float
    population: float
    state: Optional[str] = None
    country: Optional[str] = None

    @model_validator(mode="after")
    def validate_settlement(self) -> "Settlement":
        _check_coordinates(self.lat, self.lng)
        if self.population < 0:
            raise ValueError(f"population must be non-negative, got {self.population}.")
        return self


class AnchorPoint(BaseModel):
    """A point of interest that draws footfall (mall, station, grocer ...)."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    kind: str = "retail"


class UrbanSignals(BaseModel):
    """Urban-suitability answer for one point.

    Attributes:
        road_distance_m:     Distance to the nearest road, or ``None``.
        building_distance_m: Distance to the nearest building, or ``None``.
        landuse_type:        Land-use class at the point, or ``None``.
    """

    model_config = ConfigDict(frozen=True)

    road_distance_m: Optional[float] = None
    building_distance_m: Optional[float] = None
    landuse_type: Optional[str] = None

    @field_validator("road_distance_m", "building_distance_m")
    @classmethod
    def validate_distance(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError(f"Distances must be non-negative, got {v}.")
        return v
