"""
Structured logging for the workflow platform.

Workflow code logs with ``extra={"project_id": ..., "tracker_id": ...}``;
both formatters surface those fields so a tracker's history can be followed
across requests and scheduled jobs.

- Development: colored line ending in ``[project=12 tracker=3 line_item=40]``
- Production: one JSON object per line
- LOG_LEVEL / LOG_FORMAT config (env) override the defaults
"""

import json
import logging
import sys
from datetime import datetime, timezone

# (record attribute, short label used by the readable formatter)
WORKFLOW_CONTEXT = (
    ("project_id", "project"),
    ("tracker_id", "tracker"),
    ("workflow_type", "workflow"),
    ("line_item_id", "line_item"),
    ("job_name", "job"),
)
REQUEST_CONTEXT = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")


def workflow_context(record: logging.LogRecord) -> dict:
    """Workflow fields attached to *record*, in a stable order."""
    return {
        key: getattr(record, key)
        for key, _ in WORKFLOW_CONTEXT
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key in REQUEST_CONTEXT:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        context = workflow_context(record)
        if context:
            log_entry["workflow"] = context
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def context_suffix(self, record: logging.LogRecord) -> str:
        parts = [
            f"{label}={getattr(record, key)}"
            for key, label in WORKFLOW_CONTEXT
            if getattr(record, key, None) is not None
        ]
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"{duration:.0f}ms")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}{self.context_suffix(record)}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def build_formatter(app) -> logging.Formatter:
    """JSON outside dev/test unless LOG_FORMAT says otherwise."""
    fmt = (app.config.get("LOG_FORMAT") or "").lower()
    if not fmt:
        is_dev = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
        fmt = "readable" if is_dev else "json"
    if fmt == "json":
        return JSONFormatter()
    return ReadableFormatter(use_color=sys.stderr.isatty())


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    LOG_LEVEL defaults to DEBUG in dev and INFO otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    default_level = "DEBUG" if app.config.get("DEBUG", False) else "INFO"
    level_name = app.config.get("LOG_LEVEL") or default_level
    level = getattr(logging, level_name.upper(), logging.INFO)
    formatter = build_formatter(app)

    # Single root handler; re-running the factory in tests must not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, type(formatter).__name__)
