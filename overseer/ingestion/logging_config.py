"""Structured logging for scans, graph writes and scheduled rescans."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone

LOG_FORMATS = ("json", "text")

# Scan context callers attach via ``extra={...}``.
EXTRA_FIELDS = (
    "organization",
    "repository",
    "operation",
    "records",
    "duration_ms",
    "api_calls",
    "rate_remaining",
    "rate_limit",
    "rate_reset",
)

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(threadName)s] %(message)s"


def _scan_fields(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in EXTRA_FIELDS
        if getattr(record, key, None) is not None
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line, stamped with the record's own time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # CODEOWNERS lookups run on worker threads
        if record.threadName != threading.main_thread().name:
            entry["thread"] = record.threadName
        entry.update(_scan_fields(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs; scan fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _scan_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Route ``overseer`` and APScheduler warnings to stderr.

    Calling it again replaces the handler, so the CLI can reconfigure once
    the environment has been loaded.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(TextFormatter() if fmt == "text" else JsonFormatter())

    app = logging.getLogger("overseer")
    app.setLevel(getattr(logging, level.upper(), logging.INFO))
    app.handlers[:] = [handler]
    app.propagate = False

    # Missed or overlapping rescans are reported by APScheduler itself.
    sched = logging.getLogger("apscheduler")
    sched.setLevel(logging.WARNING)
    sched.handlers[:] = [handler]
    sched.propagate = False
