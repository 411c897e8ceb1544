"""Logging setup: plain or JSON output, with per-context workflow fields."""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] %(message)s"

# Third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
}


class StructuredFormatter(logging.Formatter):
    """Renders each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            "thread": record.threadName
        }
        payload.update(getattr(record, "extra_fields", {}))

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": "".join(traceback.format_exception(*record.exc_info))
            }

        return json.dumps(payload, default=str)


class WorkflowContextFilter(logging.Filter):
    """Attaches the current context's workflow fields to every record.

    Fields live in a ``ContextVar``: concurrent requests on the event loop and
    branches running in worker threads each see only their own fields.
    """

    def __init__(self):
        super().__init__()
        self._fields: ContextVar[Dict[str, Any]] = ContextVar(f"log_fields_{id(self)}", default={})

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields.get())

    def set_context(self, **kwargs) -> Token:
        return self._fields.set({**self._fields.get(), **kwargs})

    def reset_context(self, token: Token):
        self._fields.reset(token)

    def clear_context(self):
        self._fields.set({})

    def filter(self, record: logging.LogRecord) -> bool:
        merged = self.fields
        merged.update(getattr(record, "extra_fields", {}))
        record.extra_fields = merged
        return True


_context_filter = WorkflowContextFilter()


def _build_handlers(log_file: Optional[str], max_size: int, backup_count: int):
    yield logging.StreamHandler(sys.stdout)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        yield RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger for the engine.

    Existing root handlers are replaced, so calling this twice is safe.

    Args:
        level: Level name such as "INFO" or "DEBUG"
        log_file: Also write to this file, rotated at ``max_size`` bytes
        log_format: Format string for plain output
        structured: Emit JSON lines instead of plain text
        max_size: Rotation threshold of the log file in bytes
        backup_count: Rotated files kept next to the log file

    Returns:
        The configured root logger
    """
    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in list(root.handlers):
        root.removeHandler(existing)

    for handler in _build_handlers(log_file, max_size, backup_count):
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
        root.addHandler(handler)

    for name, cap in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def current_logging_context() -> Dict[str, Any]:
    return _context_filter.fields


@contextmanager
def logging_context(**kwargs):
    """Add fields for the duration of the block, then restore the previous ones."""
    token = _context_filter.set_context(**kwargs)
    try:
        yield
    finally:
        _context_filter.reset_context(token)


def log_with_context(logger: logging.Logger, level: int, message: str, **fields):
    """Log ``message`` with ``fields`` added to the structured output."""
    logger.log(level, message, extra={"extra_fields": fields})


class RetryLogger:
    """Emits retry lifecycle events for one component."""

    def __init__(self, component_name: str):
        self.component_name = component_name
        self.logger = get_logger(f"agent_cooperation.retry.{component_name}")

    def _emit(self, level: int, message: str, **fields):
        log_with_context(self.logger, level, message, component=self.component_name, **fields)

    def log_retry_attempt(self, node_name: str, error: str, attempt: int, max_attempts: int, delay_ms: int):
        self._emit(
            logging.WARNING,
            f"Node {node_name} attempt {attempt}/{max_attempts} failed ({error}); retrying in {delay_ms}ms",
            node=node_name, error_message=error, attempt=attempt,
            max_attempts=max_attempts, delay_ms=delay_ms
        )

    def log_retry_success(self, node_name: str, attempts_used: int):
        self._emit(
            logging.INFO,
            f"Node {node_name} succeeded on attempt {attempts_used}",
            node=node_name, attempts_used=attempts_used, outcome="recovered"
        )

    def log_retry_exhausted(self, node_name: str, final_error: str, attempts_used: int):
        self._emit(
            logging.ERROR,
            f"Node {node_name} gave up after {attempts_used} attempt(s): {final_error}",
            node=node_name, error_message=final_error, attempts_used=attempts_used, outcome="exhausted"
        )
