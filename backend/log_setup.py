"""Leveled diagnostic output on top of the standard logging module.

Four levels are recognised: silent, error, info and debug. Errors go to
stderr, informational and debug records to stdout, and everything that
passes the level goes to the optional log file as well.
"""

import json
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# silent has no threshold: nothing is emitted at all
LOG_LEVELS = {
    "silent": None,
    "error": logging.ERROR,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class StructuredJSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging (ELK, Loki, etc.)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = _current_request_id()
        if request_id:
            entry["request_id"] = request_id

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


def _current_request_id() -> str | None:
    from flask import g, has_app_context
    if not has_app_context():
        return None
    return getattr(g, "request_id", None)


class _BelowErrorFilter(logging.Filter):
    """Pass only records below ERROR (stdout carries info and debug)."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


class _ManagedHandlerMixin:
    """Marks handlers installed by setup_logging so a later call can replace them."""

    moviepolls_managed = True


class _StreamHandler(_ManagedHandlerMixin, logging.StreamHandler):
    pass


class _FileHandler(_ManagedHandlerMixin, logging.FileHandler):
    pass


def parse_log_level(name: str) -> str:
    """Normalise a level name. Raises ValueError for unknown names."""
    level = (name or "").strip().lower()
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level {name!r}, expected one of: {', '.join(LOG_LEVELS)}")
    return level


def setup_logging(level: str = "info", log_file: str = "", log_format: str = "text") -> None:
    """Configure the root logger for the given level.

    Args:
        level: silent, error, info or debug (case-insensitive).
        log_file: Optional path; opened in append mode and created if missing.
        log_format: "text" or "json".

    Raises:
        ValueError: Unknown level name.
        OSError: The log file could not be opened.
    """
    level = parse_log_level(level)
    threshold = LOG_LEVELS[level]

    # Open the file first so a failure leaves the previous setup in place
    file_handler = None
    if log_file and threshold is not None:
        file_handler = _FileHandler(log_file, mode="a", encoding="utf-8")

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "moviepolls_managed", False):
            root.removeHandler(handler)
            handler.close()

    if threshold is None:
        root.setLevel(logging.CRITICAL + 1)
        return

    if log_format.lower() == "json":
        formatter: logging.Formatter = StructuredJSONFormatter()
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    root.setLevel(threshold)

    err = _StreamHandler(sys.stderr)
    err.setLevel(logging.ERROR)
    err.setFormatter(formatter)
    root.addHandler(err)

    if threshold < logging.ERROR:
        out = _StreamHandler(sys.stdout)
        out.setLevel(threshold)
        out.addFilter(_BelowErrorFilter())
        out.setFormatter(formatter)
        root.addHandler(out)

    if file_handler is not None:
        file_handler.setLevel(threshold)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Werkzeug request lines are info-level noise unless debugging
    logging.getLogger("werkzeug").setLevel(logging.DEBUG if level == "debug" else logging.WARNING)
