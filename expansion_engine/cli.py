"""
Expansion Engine — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute the action (DB init, store import, generation, refresh ...).
  5. Report the result to stdout.

Install and run::

    pip install -e .
    expansion-engine --help
    expansion-engine init-db
    expansion-engine import-stores data/stores.json
    expansion-engine generate --country Germany --aggression 60 --seed 20251029
    expansion-engine generate --state Bayern --seed 7 --save "Bayern Q3" --output data/outputs
    expansion-engine list-scenarios
    expansion-engine refresh-scenario 1
    expansion-engine set-status 1 sug-ab12cd34ef56 APPROVED
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="expansion-engine",
    help="Expansion site scoring and suggestion engine.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from expansion_engine.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    from expansion_engine.utils.logging import configure_logging
    configure_logging(config.logging)


def _ensure_schema(config, db_path: str) -> None:
    from expansion_engine.db.connection import get_connection
    from expansion_engine.db.schema import apply_schema

    with get_connection(
        db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database. Safe to run repeatedly."""
    from expansion_engine.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")
    _ensure_schema(config, target_path)
    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False, "--full", help="Print full config (secrets omitted).",
    ),
) -> None:
    """Validate the configuration file and print the key values."""
    from expansion_engine.config import config_snapshot
    from expansion_engine.regions import known_regions

    config = _load_config_or_exit(config_path)
    regions = known_regions()

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Settlements file: {config.data.settlements_file}")
    typer.echo(f"  Target range:     {config.expansion.min_target}–{config.expansion.max_target}")
    typer.echo(f"  Timeout:          {config.expansion.timeout_ms} ms")
    typer.echo(f"  Candidate cap:    {config.expansion.max_candidates_evaluated}")
    typer.echo(f"  Mapbox token:     {'set' if config.urban.mapbox_token else 'not set'}")
    typer.echo(f"  LLM API key:      {'set' if config.ai.api_key else 'not set'} ({config.ai.model})")
    typer.echo(f"  Known regions:    {len(regions['countries'])} countries, "
               f"{len(regions['states'])} states")
    typer.echo(f"  Log level:        {config.logging.level}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config_snapshot(config), indent=2))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("import-stores")
def import_stores(
    source: Path = typer.Argument(..., help="JSON list of stores."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config."),
) -> None:
    """Upsert a store snapshot file into the database (keyed by external_ref)."""
    from expansion_engine.pipeline.import_stores import ImportStoresStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    if not source.exists():
        typer.echo(f"[ERROR] File not found: {source}", err=True)
        raise typer.Exit(code=1)

    target_db = db_path or config.database.db_path
    _ensure_schema(config, target_db)
    try:
        run = ImportStoresStage(config=config, db_path=target_db).run(source_path=source)
    except (ValueError, OSError) as exc:
        typer.echo(f"[ERROR] Import failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Imported {run.rows_processed} store(s).")


@app.command("generate")
def generate(
    country: Optional[str] = typer.Option(None, "--country", help="Country name."),
    state: Optional[str] = typer.Option(None, "--state", help="State name."),
    bbox: Optional[str] = typer.Option(
        None, "--bbox", help="Explicit box as north,south,east,west.",
    ),
    aggression: float = typer.Option(50.0, "--aggression", help="0–100."),
    population_bias: float = typer.Option(0.5, "--population-bias"),
    proximity_bias: float = typer.Option(0.3, "--proximity-bias"),
    turnover_bias: float = typer.Option(0.2, "--turnover-bias"),
    min_distance_m: float = typer.Option(800.0, "--min-distance", help="Metres."),
    seed: int = typer.Option(..., "--seed", help="Seed for all random choices."),
    target: Optional[int] = typer.Option(None, "--target", help="Explicit target count."),
    urban: bool = typer.Option(False, "--urban", help="Enable Mapbox urban filtering."),
    ai: bool = typer.Option(False, "--ai", help="Enable the AI strategy reranker."),
    diagnostics: bool = typer.Option(False, "--diagnostics", help="Attach diagnostics."),
    max_candidates: Optional[int] = typer.Option(None, "--max-candidates"),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms"),
    save: Optional[str] = typer.Option(None, "--save", help="Save as a scenario with this name."),
    output: Optional[Path] = typer.Option(None, "--output", help="Write JSON + CSV here."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config."),
) -> None:
    """Generate expansion suggestions for a region.

    \b
    Exit codes:
      0  ok or partial result (see notes)
      1  invalid parameters or unknown region
    """
    from expansion_engine.errors import InvalidParametersError
    from expansion_engine.pipeline.generate import GenerateStage
    from expansion_engine.reporting.formatters import (
        format_generation_summary,
        format_suggestion_table,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    region: dict = {}
    if country:
        region["country"] = country
    if state:
        region["state"] = state
    if bbox:
        try:
            north, south, east, west = (float(v) for v in bbox.split(","))
        except ValueError:
            typer.echo("[ERROR] --bbox must be four numbers: north,south,east,west", err=True)
            raise typer.Exit(code=1)
        region["bbox"] = {"north": north, "south": south, "east": east, "west": west}

    request = {
        "region": region,
        "aggression": aggression,
        "populationBias": population_bias,
        "proximityBias": proximity_bias,
        "turnoverBias": turnover_bias,
        "minDistanceM": min_distance_m,
        "seed": seed,
        "targetCount": target,
        "enableMapboxFiltering": urban,
        "enableAIRationale": ai,
        "enableDiagnostics": diagnostics,
        "maxCandidatesEvaluated": max_candidates,
        "timeoutMs": timeout_ms,
    }

    target_db = db_path or config.database.db_path
    _ensure_schema(config, target_db)
    stage = GenerateStage(config=config, db_path=target_db)
    try:
        run = stage.run(request=request, save_as=save, output_dir=output)
    except InvalidParametersError as exc:
        for message in exc.errors:
            typer.echo(f"[ERROR] {message}", err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    result = stage.last_result
    assert result is not None
    typer.echo(format_generation_summary(result))
    typer.echo("")
    typer.echo(format_suggestion_table(result))
    for path in stage.last_outputs:
        typer.echo(f"  Wrote {path}")
    if run.scenario_id is not None:
        typer.echo(f"  Saved as scenario {run.scenario_id}.")
    typer.echo("")
    typer.echo(f"[OK] {len(result.suggestions)} suggestion(s) | status={result.metadata.status}")


@app.command("refresh-scenario")
def refresh_scenario(
    scenario_id: int = typer.Argument(..., help="Scenario id."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config."),
) -> None:
    """Regenerate a saved scenario against the current store data."""
    from expansion_engine.pipeline.refresh import RefreshStage
    from expansion_engine.reporting.formatters import format_generation_summary

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_db = db_path or config.database.db_path
    _ensure_schema(config, target_db)
    stage = RefreshStage(config=config, db_path=target_db)
    try:
        stage.run(scenario_id=scenario_id)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    result = stage.last_result
    assert result is not None
    typer.echo(format_generation_summary(result))
    typer.echo(f"[OK] Scenario {scenario_id} refreshed | dataVersion={result.metadata.data_version}")


@app.command("list-scenarios")
def list_scenarios(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config."),
) -> None:
    """List saved scenarios."""
    from expansion_engine.db.connection import get_connection
    from expansion_engine.db.repositories.scenario_repo import ScenarioRepository
    from expansion_engine.reporting.formatters import format_scenario_list

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_db = db_path or config.database.db_path
    _ensure_schema(config, target_db)
    with get_connection(target_db) as conn:
        scenarios = ScenarioRepository(conn).list_scenarios()
    typer.echo(format_scenario_list(scenarios))


@app.command("set-status")
def set_status(
    scenario_id: int = typer.Argument(..., help="Scenario id."),
    suggestion_id: str = typer.Argument(..., help="Suggestion id."),
    status: str = typer.Argument(..., help="APPROVED, REJECTED or REVIEWED."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config."),
) -> None:
    """Record a review decision on one suggestion."""
    from expansion_engine.db.connection import get_connection
    from expansion_engine.db.repositories.scenario_repo import ScenarioRepository
    from expansion_engine.models.suggestion import SuggestionStatus

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        new_status = SuggestionStatus(status.upper())
    except ValueError:
        valid = ", ".join(s.value for s in SuggestionStatus)
        typer.echo(f"[ERROR] Unknown status '{status}'. Use one of: {valid}", err=True)
        raise typer.Exit(code=1)

    target_db = db_path or config.database.db_path
    try:
        with get_connection(target_db) as conn:
            updated = ScenarioRepository(conn).update_suggestion_status(
                scenario_id, suggestion_id, new_status,
            )
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"[OK] {updated.suggestion_id} → {updated.status.value}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
