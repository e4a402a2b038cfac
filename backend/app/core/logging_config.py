"""
Logging setup for the epidemic core.

Production writes one JSON object per line; development writes coloured
single-line records.  Both surface the domain fields modules pass through
``extra=``:

    logger.info("Zone entry alert", extra={"user_id": "U1", "zone_id": "Z1",
                                            "delivery_state": "delivered"})

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

# Domain attributes lifted out of ``extra=`` into the rendered record
_EXTRA_FIELDS = (
    "user_id", "zone_id", "channel", "delivery_state", "batch_count",
    "cell_count", "cluster_count", "case_count", "duration_ms", "details",
)

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "urllib3")


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: getattr(record, k) for k in _EXTRA_FIELDS if hasattr(record, k)}


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_extras(record))
        if record.exc_info:
            exc = record.exc_info[1]
            entry["exception"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "trace": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Coloured console output; extras appended as key=value."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        fields = _extras(record)
        if fields:
            line += "  " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    ``level`` defaults to LOG_LEVEL and ``json_output`` to "running in
    production".  Safe to call more than once.
    """
    if json_output is None:
        json_output = settings.is_production
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else PrettyFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
