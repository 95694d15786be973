"""
CallSim Observability Module
============================

Structured logging scoped to the running job (kind, tenant, kb type, source, run).
"""

from .logging_config import (
    CONTEXT_FIELDS,
    ContextFormatter,
    OperationLogger,
    StructuredFormatter,
    bind_context,
    current_context,
    log_exception,
    setup_logging,
    setup_logging_from_settings,
)

__all__ = [
    "CONTEXT_FIELDS",
    "ContextFormatter",
    "OperationLogger",
    "StructuredFormatter",
    "bind_context",
    "current_context",
    "log_exception",
    "setup_logging",
    "setup_logging_from_settings",
]
