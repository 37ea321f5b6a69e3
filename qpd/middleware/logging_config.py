"""
Structured logging configuration.

Every log line emitted inside a request carries the request id and the
acting user (``X-User-Id``), so a record's lifecycle can be followed
across services:

    10:42:07 INFO     qpd.services.workflow_engine: Workflow approve record=7 [req=3f9c1a user=qa-lead record=7]

- Development / testing: human-readable colored lines with a context tag
- Production: one JSON object per line
- Log level: LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Attributes copied from a LogRecord into output when present, in this order
CONTEXT_KEYS = (
    "request_id",
    "user_id",
    "process_id",
    "record_id",
    "action",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

# Shown in the readable tag; the rest only go to JSON
_TAG_KEYS = {"request_id": "req", "user_id": "user", "process_id": "process",
             "record_id": "record", "action": "action"}


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class RequestContextFilter(logging.Filter):
    """Stamp request id and acting user onto records logged during a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "user_id", None) is None:
                record.user_id = request.headers.get("X-User-Id") or None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output with a bracketed context tag."""

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
        ctx = _context(record)
        tag = " ".join(f"{short}={ctx[key]}" for key, short in _TAG_KEYS.items() if key in ctx)
        if "duration_ms" in ctx:
            tag = f"{tag} {ctx['duration_ms']:.0f}ms".strip()
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if tag:
            line += f" [{tag}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger.

    JSON in production, readable lines in development and testing.  The
    root handlers are replaced, so calling this again (one app per test
    session) never duplicates output.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if is_prod else "readable")
