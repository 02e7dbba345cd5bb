"""Structured JSON logging configuration.

Session logs carry user_id, role and the session generation so that
cross-tab reconciliation and refresh races can be traced afterwards.
Secrets are masked before output.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from toollink.logging.secret_sanitizer import sanitize_secrets

_EXTRA_FIELDS = ("user_id", "role", "generation", "state", "decision", "error_type", "request_id")


class JSONFormatter(logging.Formatter):
    """Formats log records as structured JSON with secret sanitization."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "event": sanitize_secrets(record.getMessage()),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = sanitize_secrets(str(record.exc_info[1]))

        return json.dumps(log_entry, ensure_ascii=False)


class SanitizingTextFormatter(logging.Formatter):
    """Human-readable formatter that still masks secrets."""

    def format(self, record: logging.LogRecord) -> str:
        return sanitize_secrets(super().format(record))


def setup_logging(level: str = "INFO", format_type: str = "json") -> None:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format_type: "json" for structured JSON, "text" for human-readable.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)

    if format_type == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            SanitizingTextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root.addHandler(handler)

    # Reduce noise from libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
