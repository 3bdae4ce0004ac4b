"""
Export helpers for generation results.

All functions write to disk and return the written ``Path``. File names are
``{label}_{seed}.json`` / ``{label}_{seed}.csv`` where ``label`` is a
filesystem-safe version of the region label (or a scenario name).

The JSON file is exactly the camelCase wire shape of a ``GenerationResult``.
The CSV is flat, one row per suggestion, ready for a spreadsheet or GIS
import.
"""

from __future__ import annotations

import csv
import json
import re
from pathlib import Path

from expansion_engine.models.result import GenerationResult

SUGGESTION_COLUMNS: list[str] = [
    "rank",
    "suggestionId",
    "lat",
    "lng",
    "score",
    "confidence",
    "band",
    "source",
    "name",
    "subRegion",
    "selectedByAI",
    "rationale",
    "status",
]


def safe_label(label: str) -> str:
    """``"Bayern, Germany"`` → ``"bayern_germany"``."""
    slug = re.sub(r"[^a-z0-9]+", "_", label.lower()).strip("_")
    return slug or "region"


def flatten_suggestions(result: GenerationResult) -> list[dict]:
    """One flat dict per suggestion, keyed by ``SUGGESTION_COLUMNS``."""
    rows = []
    for rank, suggestion in enumerate(result.suggestions, start=1):
        wire = suggestion.model_dump(mode="json", by_alias=True)
        row = {col: wire.get(col) for col in SUGGESTION_COLUMNS if col != "rank"}
        row["rank"] = rank
        rows.append(row)
    return rows


def write_generation_json(result: GenerationResult, output_dir: Path, label: str) -> Path:
    """Write the full result (wire shape) to ``{output_dir}/{label}_{seed}.json``."""
    path = Path(output_dir) / f"{safe_label(label)}_{result.metadata.seed}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_wire(), indent=2), encoding="utf-8")
    return path


def write_suggestions_csv(result: GenerationResult, output_dir: Path, label: str) -> Path:
    """Write suggestions as CSV to ``{output_dir}/{label}_{seed}.csv``.

    An empty result still produces a file with just the header row.
    """
    path = Path(output_dir) / f"{safe_label(label)}_{result.metadata.seed}.csv"
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=SUGGESTION_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(flatten_suggestions(result))
    return path
