"""
Centralized Logging

Architectural Intent:
- Provides structured JSON logging for all Convoy components
- Centralizes log configuration to avoid scattered print() calls
- Supports configurable log levels via CLI flags (--verbose, --debug)
- Rollout context passed through `extra=` (service, host, state, batch)
  becomes top-level keys in JSON output
"""

import json
import logging
import sys
from datetime import datetime, UTC
from typing import Union

CONTEXT_FIELDS = ("service", "host", "state", "batch")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value if isinstance(value, int) else str(value)
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def parse_level(level: Union[int, str]) -> int:
    """Accepts logging constants or names like 'info' / 'WARNING'."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.WARNING


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
) -> None:
    """Configure logging for the Convoy application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, etc.) or its name.
        json_format: If True, use JSON structured output. Otherwise human-readable.
    """
    level = parse_level(level)
    root = logging.getLogger("convoy")
    root.setLevel(level)

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    root.addHandler(handler)
