"""
Logging setup for the Expansion Engine.

``configure_logging(config)`` is called once by the CLI before any pipeline
work. Library modules only ever do ``logger = logging.getLogger(__name__)``.

With ``json_format = true`` in ``[logging]`` every record becomes one JSON
object per line. Generation runs attach ``seed`` and ``run_slug`` through
``extra=`` so a single request can be traced across stages::

    {"ts": "2026-02-24T15:00:00Z", "level": "INFO",
     "logger": "expansion_engine.engine.orchestrator",
     "msg": "Iteration 2 ...", "seed": 20251029, "run_slug": "..."}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from expansion_engine.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Third-party loggers that log every HTTP request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    """Render a record as a single JSON line.

    Fixed fields are ``ts``, ``level``, ``logger`` and ``msg``; anything passed
    through ``extra=`` is copied to the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        for key, val in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = val
        return json.dumps(payload, default=str)


def configure_logging(config: "LoggingConfig") -> None:
    """Configure the root logger from a ``LoggingConfig`` section.

    Installs a stdout handler, a file handler when ``config.log_file`` is set
    (parent directories are created), and the JSON formatter when
    ``config.json_format`` is true.

    Args:
        config: Logging configuration section from ``AppConfig``.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.json_format:
        formatter = JsonLineFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
