"""
Structured logging configuration.

- Development: human-readable colored format, case context appended
- Production: JSON format (log aggregator compatible)
- Log level: controlled via LOG_LEVEL env variable

Records emitted while a request is active are stamped with the request id
and the tenant/journey/case ids of the URL, so service logs can be joined
with the access log without passing ``extra`` everywhere.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

_REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
_CASE_KEYS = ("tenant_id", "journey_id", "case_id", "sender_id", "outcome")


class CaseContextFilter(logging.Filter):
    """Fill missing request/case ids from the active Flask request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = g.get("request_id")
        view_args = request.view_args or {}
        for key in ("tenant_id", "journey_id", "case_id"):
            if getattr(record, key, None) is None and view_args.get(key) is not None:
                setattr(record, key, view_args[key])
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _REQUEST_KEYS + _CASE_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    @staticmethod
    def case_context(record: logging.LogRecord) -> str:
        """``" {tenant=1 case=7}"`` style suffix, empty without case ids."""
        parts = [
            f"{key.removesuffix('_id')}={getattr(record, key)}"
            for key in _CASE_KEYS
            if getattr(record, key, None) is not None
        ]
        return " {" + " ".join(parts) + "}" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        msg = record.getMessage()
        base = (f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {msg}"
                f"{dur_str}{self.case_context(record)}")
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    Development  → ReadableFormatter on stderr
    Production   → JSONFormatter on stderr
    Both carry ``CaseContextFilter`` on the root handler.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(CaseContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
