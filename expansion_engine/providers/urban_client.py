"""
Urban-suitability providers.

``MapboxUrbanClient`` asks the Mapbox Streets tilequery endpoint for the
``road``, ``building`` and ``landuse`` features around a point::

    GET {base_url}/{lng},{lat}.json?layers=road,building,landuse
        &radius={tilequery_radius_m}&limit=50&access_token=...

Each returned feature carries ``properties.tilequery.layer`` and
``properties.tilequery.distance`` (metres, 0 when the point lies inside the
feature). Signals:

    road_distance_m     nearest ``road`` feature, ``None`` if none returned
    building_distance_m nearest ``building`` feature, ``None`` if none returned
    landuse_type        ``class`` of the nearest ``landuse`` feature

Answers are cached per point rounded to 5 decimals (~1 m), least recently
used first out once ``cache_size`` points are held. No token, HTTP
errors, timeouts and undecodable bodies all raise
``ProviderUnavailableError``.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Optional

import httpx

from expansion_engine.config import UrbanConfig
from expansion_engine.errors import ProviderUnavailableError
from expansion_engine.models.store import UrbanSignals

logger = logging.getLogger(__name__)

_LAYERS = "road,building,landuse"
_LIMIT = 50


def parse_tilequery(payload: dict[str, Any]) -> UrbanSignals:
    """Reduce a tilequery FeatureCollection to ``UrbanSignals``."""
    nearest: dict[str, tuple[float, dict[str, Any]]] = {}
    for feature in payload.get("features") or []:
        props = feature.get("properties") or {}
        meta = props.get("tilequery") or {}
        layer = meta.get("layer")
        distance = meta.get("distance")
        if layer not in ("road", "building", "landuse") or distance is None:
            continue
        distance = max(0.0, float(distance))
        if layer not in nearest or distance < nearest[layer][0]:
            nearest[layer] = (distance, props)

    road = nearest.get("road")
    building = nearest.get("building")
    landuse = nearest.get("landuse")
    return UrbanSignals(
        road_distance_m=round(road[0], 1) if road else None,
        building_distance_m=round(building[0], 1) if building else None,
        landuse_type=(landuse[1].get("class") or landuse[1].get("type")) if landuse else None,
    )


class MapboxUrbanClient:
    """Tilequery client returning road / building / land-use signals.

    Args:
        config:      Urban provider settings (token, base URL, radius).
        http_client: Optional ``httpx.Client``; tests pass one built on
                     ``httpx.MockTransport``.
    """

    def __init__(self, config: UrbanConfig, http_client: Optional[httpx.Client] = None) -> None:
        self.config = config
        self._http = http_client
        self._cache: OrderedDict[tuple[float, float], UrbanSignals] = OrderedDict()

    def get_signals(self, lat: float, lng: float, timeout: float) -> UrbanSignals:
        key = (round(lat, 5), round(lng, 5))
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        if not self.config.mapbox_token:
            raise ProviderUnavailableError("mapbox", "no Mapbox token configured")

        url = f"{self.config.base_url}/{key[1]},{key[0]}.json"
        params = {
            "layers": _LAYERS,
            "radius": str(int(self.config.tilequery_radius_m)),
            "limit": str(_LIMIT),
            "access_token": self.config.mapbox_token,
        }
        try:
            if self._http is not None:
                resp = self._http.get(url, params=params, timeout=timeout)
            else:
                resp = httpx.get(url, params=params, timeout=timeout)
            resp.raise_for_status()
            signals = parse_tilequery(resp.json())
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError("mapbox", f"timeout after {timeout:.1f}s") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                "mapbox", f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError("mapbox", f"transport error: {exc}") from exc
        except ValueError as exc:
            raise ProviderUnavailableError("mapbox", f"undecodable response: {exc}") from exc

        self._remember(key, signals)
        return signals

    def _remember(self, key: tuple[float, float], signals: UrbanSignals) -> None:
        if self.config.cache_size <= 0:
            return
        self._cache[key] = signals
        while len(self._cache) > self.config.cache_size:
            self._cache.popitem(last=False)


class StaticUrbanProvider:
    """Returns the same ``UrbanSignals`` for every point (tests, offline runs)."""

    def __init__(self, signals: UrbanSignals) -> None:
        self.signals = signals

    def get_signals(self, lat: float, lng: float, timeout: float) -> UrbanSignals:
        return self.signals
