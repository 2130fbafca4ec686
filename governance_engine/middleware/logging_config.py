"""
Logging setup for the governance engine.

Two output shapes share one set of record fields:
  json       one object per line, for the log shipper
  readable   coloured single line for a terminal

Guard rejections log with ``extra={"principal": ..., "operation": ...}``;
inside a request the context filter fills ``request_id`` and ``principal``
from ``flask.g`` so every line of that request can be joined to its audit
rows (``AuditLog.correlation_id``).

Level and shape come from ``LOG_LEVEL`` / ``LOG_FORMAT`` in the app config.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes carried into output when set.
CONTEXT_FIELDS = (
    "request_id",
    "principal",
    "operation",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Stamp request id and principal onto records emitted inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "principal", None) is None:
                record.principal = getattr(g, "principal_email", None)
        return True


def _context_of(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context_of(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = _context_of(record)
        tags = " ".join(
            f"{key}={context[key]}" for key in ("request_id", "principal", "operation") if key in context
        )
        duration = context.get("duration_ms")
        line = "{color}{ts} {level:<8}{reset} {name}{tags}: {msg}{dur}".format(
            color=self.COLORS.get(record.levelname, ""),
            ts=datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
            level=record.levelname,
            reset=self.RESET,
            name=record.name,
            tags=f" [{tags}]" if tags else "",
            msg=record.getMessage(),
            dur=f" [{duration:.0f}ms]" if duration is not None else "",
        )
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


FORMATTERS = {"json": JSONFormatter, "readable": ReadableFormatter}


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    ``LOG_FORMAT`` defaults to json outside debug/testing, readable otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)
    format_name = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    formatter_cls = FORMATTERS.get(format_name, ReadableFormatter)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter_cls())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    # Repeated create_app calls in tests must not stack handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, format_name)
