"""
Built-in registry of named regions.

Maps country and German state names to approximate bounding boxes so a
``RegionFilter(country="Germany")`` can be discretized without a geocoder.
Names are matched case-insensitively after normalization (umlauts folded,
punctuation stripped) and common aliases are accepted (``"Deutschland"``,
``"DE"``, ``"Bavaria"`` ...).

Resolution rules
----------------
- ``state`` set      → the state's box (``country`` must agree when both set)
- ``country`` only   → the country's box
- ``bbox`` set       → the box itself
- unknown name       → ``None`` (the orchestrator reports InvalidParameters)

``state_for_point()`` returns the smallest registered state box containing
a point; it is the sub-region fallback for grid candidates that did not
match a settlement.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from expansion_engine.models.region import BoundingBox, RegionFilter

# (north, south, east, west)
_COUNTRIES: dict[str, tuple[float, float, float, float]] = {
    "Germany":        (55.06, 47.27, 15.04, 5.87),
    "Austria":        (49.02, 46.37, 17.16, 9.53),
    "Switzerland":    (47.81, 45.82, 10.49, 5.96),
    "Netherlands":    (53.56, 50.75, 7.23, 3.36),
    "Belgium":        (51.51, 49.50, 6.41, 2.55),
    "France":         (51.09, 42.33, 8.23, -4.79),
    "United Kingdom": (60.86, 49.96, 1.77, -8.65),
    "Ireland":        (55.39, 51.42, -5.99, -10.48),
    "Poland":         (54.84, 49.00, 24.15, 14.12),
    "Czech Republic": (51.06, 48.55, 18.86, 12.09),
    "Denmark":        (57.75, 54.56, 15.19, 8.07),
    "Spain":          (43.79, 36.00, 3.32, -9.30),
    "Italy":          (47.09, 36.65, 18.52, 6.63),
    "United States":  (49.38, 24.52, -66.95, -124.77),
}

# German states (Bundesländer)
_STATES: dict[str, tuple[str, tuple[float, float, float, float]]] = {
    "Baden-Württemberg":      ("Germany", (49.79, 47.53, 10.50, 7.51)),
    "Bayern":                 ("Germany", (50.56, 47.27, 13.84, 8.98)),
    "Berlin":                 ("Germany", (52.68, 52.34, 13.76, 13.09)),
    "Brandenburg":            ("Germany", (53.56, 51.36, 14.77, 11.27)),
    "Bremen":                 ("Germany", (53.61, 53.01, 8.99, 8.48)),
    "Hamburg":                ("Germany", (53.96, 53.40, 10.33, 9.73)),
    "Hessen":                 ("Germany", (51.66, 49.40, 10.24, 7.77)),
    "Mecklenburg-Vorpommern": ("Germany", (54.68, 53.11, 14.41, 10.59)),
    "Niedersachsen":          ("Germany", (53.89, 51.30, 11.60, 6.65)),
    "Nordrhein-Westfalen":    ("Germany", (52.53, 50.32, 9.46, 5.87)),
    "Rheinland-Pfalz":        ("Germany", (50.94, 48.97, 8.51, 6.11)),
    "Saarland":               ("Germany", (49.64, 49.11, 7.40, 6.36)),
    "Sachsen":                ("Germany", (51.68, 50.17, 15.04, 11.87)),
    "Sachsen-Anhalt":         ("Germany", (53.04, 50.94, 13.19, 10.56)),
    "Schleswig-Holstein":     ("Germany", (55.06, 53.36, 11.31, 7.87)),
    "Thüringen":              ("Germany", (51.65, 50.20, 12.65, 9.88)),
}

_ALIASES: dict[str, str] = {
    "deutschland": "Germany",
    "de": "Germany",
    "deu": "Germany",
    "osterreich": "Austria",
    "at": "Austria",
    "schweiz": "Switzerland",
    "ch": "Switzerland",
    "nederland": "Netherlands",
    "the netherlands": "Netherlands",
    "nl": "Netherlands",
    "uk": "United Kingdom",
    "great britain": "United Kingdom",
    "england": "United Kingdom",
    "usa": "United States",
    "us": "United States",
    "united states of america": "United States",
    "czechia": "Czech Republic",
    "bavaria": "Bayern",
    "hesse": "Hessen",
    "lower saxony": "Niedersachsen",
    "north rhine westphalia": "Nordrhein-Westfalen",
    "nrw": "Nordrhein-Westfalen",
    "rhineland palatinate": "Rheinland-Pfalz",
    "saxony": "Sachsen",
    "saxony anhalt": "Sachsen-Anhalt",
    "thuringia": "Thüringen",
    "bw": "Baden-Württemberg",
}


@dataclass(frozen=True)
class ResolvedRegion:
    """A region filter resolved to a bounding box."""

    label: str
    bbox: BoundingBox
    country: Optional[str] = None
    state: Optional[str] = None


def normalize_name(name: str) -> str:
    """Fold case, umlauts and punctuation: ``"Baden-Württemberg"`` → ``"baden wurttemberg"``."""
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    folded = re.sub(r"[^a-z0-9]+", " ", folded.lower())
    return folded.strip()


def _build_index(names: list[str]) -> dict[str, str]:
    return {normalize_name(n): n for n in names}


_COUNTRY_INDEX = _build_index(list(_COUNTRIES))
_STATE_INDEX = _build_index(list(_STATES))


def canonical_country(name: str) -> Optional[str]:
    key = normalize_name(name)
    canonical = _COUNTRY_INDEX.get(key) or _ALIASES.get(key)
    return canonical if canonical in _COUNTRIES else None


def canonical_state(name: str) -> Optional[str]:
    key = normalize_name(name)
    canonical = _STATE_INDEX.get(key) or _ALIASES.get(key)
    return canonical if canonical in _STATES else None


def _box(values: tuple[float, float, float, float]) -> BoundingBox:
    north, south, east, west = values
    return BoundingBox(north=north, south=south, east=east, west=west)


def resolve_region(region: RegionFilter) -> Optional[ResolvedRegion]:
    """Resolve a region filter to a bounding box, or ``None`` if unknown."""
    if region.bbox is not None:
        return ResolvedRegion(label=region.label(), bbox=region.bbox)

    country = canonical_country(region.country) if region.country else None
    if region.country and country is None:
        return None

    if region.state:
        state = canonical_state(region.state)
        if state is None:
            return None
        state_country, values = _STATES[state]
        if country is not None and country != state_country:
            return None
        return ResolvedRegion(
            label=f"{state}, {state_country}",
            bbox=_box(values),
            country=state_country,
            state=state,
        )

    if country is None:
        return None
    return ResolvedRegion(label=country, bbox=_box(_COUNTRIES[country]), country=country)


_STATE_BOXES: list[tuple[str, BoundingBox]] = [
    (name, _box(_STATES[name][1])) for name in sorted(_STATES)
]


def state_for_point(lat: float, lng: float) -> Optional[str]:
    """Smallest registered state box containing the point, or ``None``."""
    best: Optional[str] = None
    best_area = float("inf")
    for name, box in _STATE_BOXES:
        if box.contains(lat, lng) and box.area_km2 < best_area:
            best, best_area = name, box.area_km2
    return best


def known_regions() -> dict[str, list[str]]:
    """Registered names, for CLI help and error messages."""
    return {"countries": sorted(_COUNTRIES), "states": sorted(_STATES)}
