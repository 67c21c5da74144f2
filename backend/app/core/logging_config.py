"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Run-scoped context (run_id, run_kind) so every line emitted during a
      batch / nowcast cycle can be correlated

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Scored location", extra={"location_id": "D01", "flood_score": 42})
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from backend.app.core.config import settings

# ── Context variable for run-scoped data ──
_run_context: ContextVar[Dict[str, Any]] = ContextVar("run_context", default={})

# Extra record attributes copied into JSON output when present
EXTRA_FIELDS = (
    "location_id", "region", "flood_score", "landslide_score",
    "overall_score_1h", "source", "duration_ms", "status_code", "endpoint",
    "location_count", "error",
)


def set_run_context(**kwargs: Any) -> None:
    """Set run-scoped log context (call at the start of a scoring cycle)."""
    _run_context.set(kwargs)


def get_run_context() -> Dict[str, Any]:
    """Get current run context."""
    return _run_context.get()


@contextmanager
def run_context(kind: str, **kwargs: Any) -> Iterator[str]:
    """
    Scope a scoring cycle: assigns a short run id and restores the
    previous context on exit.

        with run_context("nowcast") as run_id:
            ...
    """
    run_id = uuid.uuid4().hex[:12]
    token = _run_context.set({"run_id": run_id, "run_kind": kind, **kwargs})
    try:
        yield run_id
    finally:
        _run_context.reset(token)


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """Machine-parseable JSON log output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        ctx = get_run_context()
        if ctx:
            log_entry["context"] = ctx

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")
        msg = record.getMessage()

        ctx = get_run_context()
        ctx_str = ""
        if ctx.get("run_id"):
            ctx_str = f" [{ctx.get('run_kind', 'run')}:{ctx['run_id'][:8]}]"

        formatted = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{ctx_str} {record.name}: {msg}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"

        return formatted


# ── Setup ──

def setup_logging() -> None:
    """Configure logging based on environment."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(PrettyFormatter())

    root.addHandler(handler)

    # Quieten noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger — call once per module."""
    return logging.getLogger(name)
