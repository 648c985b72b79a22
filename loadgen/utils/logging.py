"""
Logging setup for the load job runtime.

One call to ``configure_logging`` wires the root logger for the CLI, the
orchestrator and every worker thread. Console output is line-oriented and
carries the thread name so interleaved worker messages stay attributable;
``json_logs`` switches to one JSON object per line for collectors. Fields
passed through ``extra`` (``job``, ``phase``, ``channel``, ``worker``...) are
promoted to top-level JSON keys.

Database driver loggers are held at WARNING unless the run is at DEBUG, since
pool housekeeping would otherwise drown the job's own output.

Usage:
    from loadgen.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("Phase complete", extra={"job": "add_delete", "phase": "add"})
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DRIVER_LOGGERS = ("psycopg", "psycopg.pool", "asyncpg")

# Attributes every LogRecord carries; anything else arrived through `extra`.
_RESERVED = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as one JSON line."""
    payload: Dict[str, Any] = {
        "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "thread": record.threadName,
        "message": record.getMessage(),
    }
    fields = {key: value for key, value in vars(record).items() if key not in _RESERVED}
    nested = fields.pop("extra", None)
    payload.update(fields)
    if isinstance(nested, dict):
        payload.update(nested)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure root logging.

    Parameters
    ----------
    level : str
        Logging level name for the runtime's own loggers.
    json_logs : bool
        Emit one JSON object per line instead of the console format.
    """
    level = level.upper()
    driver_level = "DEBUG" if level == "DEBUG" else "WARNING"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
                    "datefmt": "%H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "json" if json_logs else "console",
                }
            },
            "loggers": {name: {"level": driver_level} for name in DRIVER_LOGGERS},
            "root": {"handlers": ["stderr"], "level": level},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["DRIVER_LOGGERS", "JsonFormatter", "configure_logging", "get_logger"]
