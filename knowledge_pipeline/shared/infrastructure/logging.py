"""
Structured Logging
==================

JSON-structured logging with correlation ID tracking.

Provides:
- Structured JSON logs (parseable by log aggregators)
- Correlation ID propagated from the HTTP request into pipeline logs
- Contextual loggers for modules
- Performance timing utilities

Usage:
    from knowledge_pipeline.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Document processed", extra={"document_id": "..."})
"""

import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger

# Set by CorrelationIDMiddleware; background jobs leave it unset
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_REDACTED_KEYS = ("password", "api_key", "secret", "authorization")


class CorrelationIdFilter(logging.Filter):
    """Copies the active request correlation ID onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            correlation_id = correlation_id_var.get()
            if correlation_id:
                record.correlation_id = correlation_id
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter with additional fields.

    Adds:
    - timestamp in ISO format
    - correlation_id when available
    - environment name
    """

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._environment = environment

    def add_fields(
        self,
        log_record: logging.LogRecord,
        record_dict: dict[str, Any],
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record_dict, message_dict)

        if not isinstance(record_dict, dict):
            return

        if not record_dict.get("timestamp"):
            record_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

        if hasattr(log_record, "correlation_id"):
            record_dict["correlation_id"] = log_record.correlation_id

        record_dict["environment"] = self._environment

        for key, value in list(record_dict.items()):
            if not isinstance(value, str):
                continue
            lowered = key.lower()
            if any(marker in lowered for marker in _REDACTED_KEYS):
                record_dict[key] = "***REDACTED***"
            elif "token" in lowered and not lowered.endswith(("tokens", "_count")):
                record_dict[key] = "***REDACTED***"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        CustomJsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            environment=environment,
        )
    )
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        logging.Logger: Configured logger instance
    """
    return logging.getLogger(name)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its context with per-call ``extra``."""

    def process(self, msg: Any, kwargs: Any) -> tuple:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_document_logger(name: str, document_id: str, organization_id: str) -> ContextLoggerAdapter:
    """Logger that stamps every record of one processing run with its document."""
    return ContextLoggerAdapter(
        get_logger(name),
        {"document_id": document_id, "organization_id": organization_id},
    )


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "chunk_replace", document_id=doc_id):
            await repository.replace_for_document(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round(latency_ms, 2),
                **extra_context,
            },
        )
