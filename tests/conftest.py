"""
Shared pytest fixtures for the expansion engine test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``config``: Default ``AppConfig`` (no TOML, no env).
  - Small store / settlement snapshots around Munich.
  - ``make_scored``: factory for ``ScoredCandidate`` objects used by the
    suppression and reranker tests.
  - ``fake_clock``: monotonic clock that tests advance by hand.
"""

from __future__ import annotations

import sqlite3
from typing import Callable, Generator, Optional

import pytest

from expansion_engine.config import AppConfig
from expansion_engine.db.schema import apply_schema
from expansion_engine.engine.scorer import assign_band
from expansion_engine.models.candidate import (
    CandidateFeatures,
    CandidatePoint,
    ScoreComponents,
    ScoredCandidate,
)
from expansion_engine.models.store import ExistingStore, Settlement


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


# ── Configuration ─────────────────────────────────────────────────────────────

@pytest.fixture
def config() -> AppConfig:
    """Default configuration with no secrets set."""
    return AppConfig()


# ── Reference data ────────────────────────────────────────────────────────────

# Small box around Munich: 4 × 3 tiles of 10 km.
MUNICH_BBOX = {"north": 48.30, "south": 48.00, "east": 11.80, "west": 11.40}


@pytest.fixture
def munich_bbox() -> dict:
    return dict(MUNICH_BBOX)


@pytest.fixture
def sample_stores() -> list[ExistingStore]:
    """Three open stores in and around central Munich."""
    return [
        ExistingStore(
            store_id=1, external_ref="DE-0001", name="Marienplatz",
            lat=48.1374, lng=11.5755, turnover=1_200_000.0,
            country="Germany", state="Bayern", city="München",
        ),
        ExistingStore(
            store_id=2, external_ref="DE-0002", name="Schwabing",
            lat=48.1650, lng=11.5860, turnover=900_000.0,
            country="Germany", state="Bayern", city="München",
        ),
        ExistingStore(
            store_id=3, external_ref="DE-0003", name="Pasing",
            lat=48.1500, lng=11.4610, turnover=None,
            country="Germany", state="Bayern", city="München",
        ),
    ]


@pytest.fixture
def sample_settlements() -> list[Settlement]:
    return [
        Settlement(name="München", lat=48.1351, lng=11.5820, population=1_512_491,
                   state="Bayern", country="Germany"),
        Settlement(name="Garching", lat=48.2490, lng=11.6510, population=18_000,
                   state="Bayern", country="Germany"),
        Settlement(name="Unterhaching", lat=48.0660, lng=11.6160, population=26_000,
                   state="Bayern", country="Germany"),
        Settlement(name="Augsburg", lat=48.3705, lng=10.8978, population=296_582,
                   state="Bayern", country="Germany"),
    ]


# ── Candidate factory ─────────────────────────────────────────────────────────

def _features(sub_region: Optional[str], completeness: float) -> CandidateFeatures:
    return CandidateFeatures(
        population=25_000.0,
        population_state="available",
        nearest_store_m=4_000.0,
        distance_state="available",
        stores_within_5km=1,
        stores_within_10km=2,
        stores_within_15km=3,
        anchor_count=None,
        anchor_score=None,
        anchor_state="unknown",
        peer_performance=None,
        peer_state="unknown",
        sub_region=sub_region,
        completeness=completeness,
    )


@pytest.fixture
def make_scored() -> Callable[..., ScoredCandidate]:
    """Factory: ``make_scored(cid, lat, lng, score, sub_region=None)``."""

    def _make(
        candidate_id: str,
        lat: float,
        lng: float,
        score: float,
        sub_region: Optional[str] = "Bayern",
        completeness: float = 1.0,
        source: str = "grid",
    ) -> ScoredCandidate:
        confidence = round(score * completeness, 6)
        return ScoredCandidate(
            point=CandidatePoint(
                candidate_id=candidate_id,
                lat=lat,
                lng=lng,
                source=source,
                density_band="sparse",
                cell_size_m=2000.0 if source == "grid" else None,
            ),
            features=_features(sub_region, completeness),
            components=ScoreComponents(
                population=score, proximity_gap=score, turnover_gap=score, weighted=score,
            ),
            score=score,
            confidence=confidence,
            band=assign_band(confidence),
        )

    return _make


# ── Clock ─────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock that only moves when told to.

    Args:
        step: Seconds added on every read (0 = frozen).
    """

    def __init__(self, step: float = 0.0) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ticking_clock() -> Callable[[float], FakeClock]:
    """Factory for clocks that advance ``step`` seconds per read."""
    return FakeClock
