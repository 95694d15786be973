"""
CallSim - Logging Configuration
===============================

Structured JSON or human-readable logging. Every line emitted while a job
runs carries the job kind and the tenant, knowledge base, source and run it
works on.

Usage:
    from callsim.observability import setup_logging, OperationLogger

    setup_logging(level="INFO", json_format=True)

    with OperationLogger(logger, "graph_extraction", tenant_id=str(tenant_id), kb_type="operator"):
        logger.info("Extraction started")
"""

import contextvars
import json
import logging
import sys
import traceback as tb
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = ("job", "tenant_id", "kb_type", "source_id", "run_id")

_log_context: contextvars.ContextVar[dict[str, str] | None] = contextvars.ContextVar("log_context", default=None)


def current_context() -> dict[str, str]:
    return dict(_log_context.get() or {})


def bind_context(**fields) -> None:
    """Add fields to the context of the running job, e.g. a source id once it exists."""
    context = current_context()
    context.update({k: str(v) for k, v in fields.items() if k in CONTEXT_FIELDS and v is not None})
    _log_context.set(context)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_location: bool = True, extra_fields: dict[str, Any] | None = None):
        super().__init__()
        self.include_location = include_location
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if self.include_location:
            log_obj["location"] = {"file": record.filename, "line": record.lineno, "function": record.funcName}
        log_obj.update(current_context())
        if record.exc_info:
            log_obj["exception"] = {"type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                                    "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                                    "traceback": tb.format_exception(*record.exc_info) if record.exc_info[0] else None}
        if hasattr(record, "extra_data"):
            log_obj["data"] = record.extra_data
        log_obj.update(self.extra_fields)
        return json.dumps(log_obj, default=str)


class ContextFormatter(logging.Formatter):
    """Human-readable formatter prefixed with the job context."""
    DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(context)s%(name)s - %(message)s"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None):
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt or "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        context = current_context()
        parts = [f"{name}={context[name]}" for name in CONTEXT_FIELDS if name in context]
        record.context = f"[{' '.join(parts)}] " if parts else ""
        return super().format(record)


def setup_logging(level: str = "INFO", json_format: bool = False, include_location: bool = True,
                  extra_fields: dict[str, Any] | None = None) -> None:
    """Install one stdout handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        StructuredFormatter(include_location=include_location, extra_fields=extra_fields)
        if json_format else ContextFormatter()
    )
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def setup_logging_from_settings(settings) -> None:
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON,
                  extra_fields={"app": settings.APP_NAME, "environment": settings.ENVIRONMENT})


class OperationLogger:
    """Context manager that scopes the log context to a job and logs its lifecycle."""

    def __init__(self, logger: logging.Logger, job: str, tenant_id: str | None = None,
                 kb_type: str | None = None, source_id: str | None = None, run_id: str | None = None,
                 **details):
        self.logger = logger
        self.job = job
        self.fields = {"job": job, "tenant_id": tenant_id, "kb_type": kb_type, "source_id": source_id,
                       "run_id": run_id}
        self.details = details
        self.start_time: datetime | None = None
        self._token: contextvars.Token | None = None

    def __enter__(self):
        self.start_time = datetime.now(timezone.utc)
        context = current_context()
        context.update({k: str(v) for k, v in self.fields.items() if v is not None})
        self._token = _log_context.set(context)
        self.logger.info(f"Starting {self.job}",
                         extra={"extra_data": {"event": "job_start", **self.details}})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = self.duration_ms
        if exc_type is None:
            self.logger.info(f"Completed {self.job} ({duration_ms}ms)",
                             extra={"extra_data": {"event": "job_success", "duration_ms": duration_ms}})
        else:
            self.logger.error(f"Failed {self.job} ({duration_ms}ms) - {exc_val}",
                              exc_info=(exc_type, exc_val, exc_tb),
                              extra={"extra_data": {"event": "job_failed", "duration_ms": duration_ms}})
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
        return False

    @property
    def duration_ms(self) -> int:
        if not self.start_time:
            return 0
        return int((datetime.now(timezone.utc) - self.start_time).total_seconds() * 1000)


def log_exception(logger: logging.Logger, message: str, exception: Exception | None = None, **kwargs) -> None:
    """Log an exception with its traceback and extra data."""
    extra = {"extra_data": kwargs} if kwargs else {}
    if exception:
        logger.error(message, exc_info=(type(exception), exception, exception.__traceback__), extra=extra)
    else:
        logger.error(message, exc_info=True, extra=extra)
