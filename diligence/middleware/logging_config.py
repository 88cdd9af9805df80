"""
Logging for the diligence API.

Two renderings of the same records:
    JSONFormatter      one object per line for the production log shipper
    ReadableFormatter  single coloured line for the development console

Services attach domain scope through ``extra=``: the deal, template and
taxonomy namespace a call touched, and the created / failed counts of a
template run. ``RequestContextFilter`` stamps the current request id on
every record emitted while a request is served, so one template
application can be followed from the access line to each rejected item.

Settings (``app.config``, see ``diligence.config``):
    LOG_LEVEL   default DEBUG in development, INFO otherwise
    LOG_FORMAT  "json" or "readable"; JSON unless DEBUG or TESTING
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

HANDLER_NAME = "diligence"

# Attributes set by the timing middleware.
REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")

# Domain scope, with the short label used on the console.
SCOPE_KEYS = (
    ("deal_id", "deal"),
    ("template_id", "template"),
    ("namespace", "ns"),
    ("created_count", "created"),
    ("failed_count", "failed"),
)

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter", "alembic.runtime.migration")


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` onto records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = g.get("request_id")
        return True


def _collect(record: logging.LogRecord, keys) -> dict:
    found = {}
    for key in keys:
        value = getattr(record, key, None)
        if value is not None:
            found[key] = value
    return found


class JSONFormatter(logging.Formatter):
    """Request fields under ``request``, deal/template scope under ``scope``."""

    def __init__(self, service: str = "diligence"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        request_fields = _collect(record, REQUEST_KEYS)
        if request_fields:
            entry["request"] = request_fields
        scope = _collect(record, (key for key, _ in SCOPE_KEYS))
        if scope:
            entry["scope"] = scope
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message deal=7 template=3 [12ms] (req)``"""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool | None = None):
        super().__init__()
        self.use_color = sys.stderr.isatty() if use_color is None else use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        parts = [f"{ts} {level} {record.name}: {record.getMessage()}"]
        for key, label in SCOPE_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                parts.append(f"{label}={value}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"({request_id})")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app) -> logging.Handler:
    """Install the diligence stream handler on the root logger.

    Re-running replaces the previous diligence handler only; handlers owned
    by others (pytest's capture, gunicorn) stay in place.
    """
    is_testing = app.config.get("TESTING", False)
    is_dev = app.config.get("DEBUG", False)

    level_name = str(app.config.get("LOG_LEVEL") or ("DEBUG" if is_dev else "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    log_format = str(app.config.get("LOG_FORMAT")
                     or ("readable" if is_dev or is_testing else "json")).lower()
    if log_format == "json":
        formatter = JSONFormatter(service=app.import_name)
    else:
        formatter = ReadableFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
    return handler
