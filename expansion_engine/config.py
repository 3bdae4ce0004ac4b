"""
Configuration for the expansion engine.

``load_config()`` layers four sources, later ones winning:

  1. the TOML file (``config/default.toml`` unless ``--config`` is given)
  2. ``local.toml`` next to it, if present (not committed)
  3. ``.env`` at the project root (secrets; not committed)
  4. ``EXPANSION_ENGINE_*`` environment variables

Each ``[section]`` maps to one frozen pydantic model whose validators reject
inconsistent values at load time, before any stage runs.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/expansion_engine.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class DataConfig(BaseModel):
    """Filesystem paths for reference data and generated reports."""

    model_config = ConfigDict(frozen=True)

    settlements_file: str = "config/data/settlements_de.json"
    anchors_file: Optional[str] = None
    output_dir: str = "data/outputs"


class GridConfig(BaseModel):
    """Adaptive grid discretization.

    A region is tiled into ``tile_size_m`` tiles; each tile is split into
    cells whose size depends on the local store density (stores / km²):

        density <  very_sparse_max  → very_sparse_cell_m
        density <  sparse_max       → sparse_cell_m
        density <= moderate_max     → moderate_cell_m
        otherwise                   → dense_cell_m
    """

    model_config = ConfigDict(frozen=True)

    tile_size_m: float = 10_000.0
    very_sparse_max: float = 0.01
    sparse_max: float = 0.1
    moderate_max: float = 1.0
    very_sparse_cell_m: float = 5000.0
    sparse_cell_m: float = 2000.0
    moderate_cell_m: float = 1000.0
    dense_cell_m: float = 500.0
    jitter_fraction: float = 0.25
    settlement_ratio: float = 0.6

    @field_validator("jitter_fraction", "settlement_ratio")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Fraction must be in [0.0, 1.0], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_band_order(self) -> "GridConfig":
        if not 0.0 < self.very_sparse_max < self.sparse_max < self.moderate_max:
            raise ValueError(
                "Density band edges must be increasing: "
                f"{self.very_sparse_max} < {self.sparse_max} < {self.moderate_max}."
            )
        for size in (
            self.very_sparse_cell_m, self.sparse_cell_m,
            self.moderate_cell_m, self.dense_cell_m,
        ):
            if size <= 0 or size > self.tile_size_m:
                raise ValueError(
                    f"Cell size {size} m must be in (0, tile_size_m={self.tile_size_m}]."
                )
        return self


class FeatureConfig(BaseModel):
    """Feature extraction radii, urban checks and completeness credits."""

    model_config = ConfigDict(frozen=True)

    settlement_match_radius_km: float = 15.0
    population_decay_km: float = 10.0
    # Density-band population heuristic when no settlement matches
    heuristic_population: dict[str, float] = {
        "very_sparse": 2_000.0,
        "sparse": 8_000.0,
        "moderate": 25_000.0,
        "dense": 60_000.0,
    }
    anchor_radius_m: float = 1000.0
    peer_radius_km: float = 10.0
    max_road_distance_m: float = 500.0
    max_building_distance_m: float = 250.0
    allowed_landuse: list[str] = [
        "residential", "commercial", "retail", "mixed", "town", "village",
    ]
    blocked_landuse: list[str] = [
        "industrial", "farmland", "forest", "wood", "water", "military",
        "cemetery", "quarry", "wetland", "glacier",
    ]
    estimated_signal_credit: float = 0.75
    unknown_signal_penalty_cap: float = 0.25
    completeness_floor: float = 0.5

    @field_validator(
        "estimated_signal_credit", "unknown_signal_penalty_cap", "completeness_floor"
    )
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Value must be in [0.0, 1.0], got {v}.")
        return v


class ScoringConfig(BaseModel):
    """Normalization curves and saturation attenuation."""

    model_config = ConfigDict(frozen=True)

    max_population_anchor: float = 500_000.0
    proximity_midpoint_km: float = 5.0
    proximity_scale_km: float = 1.5
    turnover_reference_default: float = 1_000_000.0
    turnover_cap_ratio: float = 2.0
    neutral_turnover_score: float = 0.5
    saturation_threshold: int = 3
    saturation_rate: float = 0.25

    @field_validator("max_population_anchor", "proximity_scale_km", "turnover_cap_ratio")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Value must be > 0, got {v}.")
        return v


class ExpansionConfig(BaseModel):
    """Iterative candidate expansion limits and the aggression mapping."""

    model_config = ConfigDict(frozen=True)

    initial_batch_size: int = 100
    batch_growth_factor: float = 1.5
    max_candidates_evaluated: int = 5000
    timeout_ms: int = 60_000
    min_target: int = 5
    max_target: int = 100
    provider_budget_fraction: float = 0.5
    ai_pool_multiplier: float = 2.0

    @model_validator(mode="after")
    def validate_limits(self) -> "ExpansionConfig":
        if self.initial_batch_size < 1:
            raise ValueError("initial_batch_size must be >= 1.")
        if self.batch_growth_factor < 1.0:
            raise ValueError("batch_growth_factor must be >= 1.0.")
        if not 1 <= self.min_target <= self.max_target:
            raise ValueError(
                f"Need 1 <= min_target ({self.min_target}) <= max_target ({self.max_target})."
            )
        if not 0.0 < self.provider_budget_fraction < 1.0:
            raise ValueError("provider_budget_fraction must be in (0.0, 1.0).")
        if self.ai_pool_multiplier < 1.0:
            raise ValueError("ai_pool_multiplier must be >= 1.0.")
        return self


class AIConfig(BaseModel):
    """LLM reranker provider, retry ladder and guardrail thresholds."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    request_timeout_seconds: float = 25.0
    max_tokens: int = 2000
    balance_max_share: float = 0.40
    min_rationale_chars: int = 50
    rationale_keywords: list[str] = ["population", "anchor", "gap", "performance"]
    min_overlap_ratio: float = 0.30
    min_score_ratio: float = 0.80

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be >= 1, got {v}.")
        return v


class UrbanConfig(BaseModel):
    """Mapbox tilequery settings for urban-suitability signals."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.mapbox.com/v4/mapbox.mapbox-streets-v8/tilequery"
    mapbox_token: Optional[str] = None
    request_timeout_seconds: float = 5.0
    tilequery_radius_m: float = 1000.0
    # Points remembered per client; 0 disables the cache
    cache_size: int = 10_000

    @field_validator("cache_size")
    @classmethod
    def validate_cache_size(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"cache_size must be >= 0, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/expansion_engine.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Every section, validated and frozen.

    Stages and CLI commands receive this object; nothing below ``load_config``
    reads the environment directly.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    data: DataConfig = DataConfig()
    grid: GridConfig = GridConfig()
    features: FeatureConfig = FeatureConfig()
    scoring: ScoringConfig = ScoringConfig()
    expansion: ExpansionConfig = ExpansionConfig()
    ai: AIConfig = AIConfig()
    urban: UrbanConfig = UrbanConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PACKAGE_DIR = Path(__file__).resolve().parent

# env var → (section, key); section ``None`` means top level
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str]] = {
    "EXPANSION_ENGINE_DB_PATH": ("database", "db_path"),
    "EXPANSION_ENGINE_LOG_LEVEL": ("logging", "level"),
    "EXPANSION_ENGINE_DEBUG": (None, "debug"),
    "EXPANSION_ENGINE_LLM_API_KEY": ("ai", "api_key"),
    "EXPANSION_ENGINE_MAPBOX_TOKEN": ("urban", "mapbox_token"),
}

_SECRET_FIELDS = {"ai": {"api_key"}, "urban": {"mapbox_token"}}


def _find_project_root() -> Path:
    """Closest ancestor of the package holding ``pyproject.toml``."""
    for candidate in _PACKAGE_DIR.parents:
        if (candidate / "pyproject.toml").exists():
            return candidate
    return _PACKAGE_DIR.parent


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Build the ``AppConfig`` for this process.

    ``.env`` at the project root is loaded first without overriding variables
    already set. The TOML file is read next, then a ``local.toml`` beside it
    if one exists, then ``EXPANSION_ENGINE_*`` variables.

    Args:
        config_path: TOML file to read. Defaults to ``config/default.toml``
            under the project root.

    Returns:
        The validated configuration.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        pydantic.ValidationError: A merged value is out of range.
    """
    root = _find_project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    path = Path(config_path) if config_path is not None else root / "config" / "default.toml"
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path} (pass --config or create config/default.toml)"
        )

    raw = _read_toml(path)
    local = path.with_name("local.toml")
    if local.exists():
        raw = _deep_merge(raw, _read_toml(local))

    project = raw.pop("project", {})
    raw.setdefault("debug", project.get("debug", False))
    raw = _apply_env_overrides(raw, os.environ)
    return AppConfig.model_validate(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` laid over it, table by table."""
    merged = dict(base)
    for key, val in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(val, dict):
            merged[key] = _deep_merge(current, val)
        else:
            merged[key] = val
    return merged


def _apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for name, (section, key) in _ENV_OVERRIDES.items():
        value: Any = environ.get(name)
        if not value:
            continue
        if key == "debug":
            value = value.strip().lower() in {"1", "true", "yes", "on"}
        target = raw if section is None else raw.setdefault(section, {})
        target[key] = value
    return raw


def config_snapshot(config: AppConfig) -> dict[str, Any]:
    """JSON-safe dump of ``config`` for run records, with secrets removed."""
    return config.model_dump(mode="json", exclude=_SECRET_FIELDS)


def resolve_data_path(path: str) -> Path:
    """Resolve a configured data path against the CWD, then the project root."""
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return _find_project_root() / candidate
