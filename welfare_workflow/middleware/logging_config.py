"""
Structured logging configuration.

Production writes one JSON object per line; development and testing get a
short coloured line. Records emitted inside a request are stamped with the
request id and the acting user, so a transition can be traced from the HTTP
call through the engine without every call site passing them along.

Level comes from LOG_LEVEL (default DEBUG outside production, INFO in it).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Keys lifted from ``extra={...}`` into the JSON document when present.
CONTEXT_FIELDS = (
    "request_id",
    "actor_id",
    "case_id",
    "action",
    "from_status",
    "to_status",
    "stage_id",
    "executive_level",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


class RequestContextFilter(logging.Filter):
    """Fill request_id / actor_id from ``flask.g`` unless the caller set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor_id", None) is None:
                record.actor_id = getattr(g, "current_user_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        doc.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [case 12 · user 3] message``"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        tags = []
        if getattr(record, "case_id", None) is not None:
            tags.append(f"case {record.case_id}")
        if getattr(record, "actor_id", None) is not None:
            tags.append(f"user {record.actor_id}")
        context = f" [{' · '.join(tags)}]" if tags else ""

        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (f"{color}{stamp} {record.levelname:<8}{self.RESET} "
                f"{record.name}{context} {record.getMessage()}")
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for *app*."""
    testing = app.config.get("TESTING", False)
    production = not testing and not app.config.get("DEBUG", False)

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    # create_app runs once per test session but may run repeatedly elsewhere.
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if production else "readable")
