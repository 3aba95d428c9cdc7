"""
Structured Logging
==================

One JSON object per log line. Every line written during a triage run carries
that run's ``trace_id``, which is also the ``trace_id`` of its audit entries,
so logs and the audit trail join on one key. Secrets are masked on the way
out.

Usage:
    from helpdesk_triage.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket triaged", extra={"ticket_id": "..."})
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger


_SENSITIVE_KEYS = ("password", "api_key", "secret")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds an ISO timestamp, trace/correlation ids and the environment; masks secrets."""

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        for key in ("trace_id", "correlation_id"):
            if hasattr(record, key):
                log_record[key] = getattr(record, key)

        log_record["environment"] = self._environment

        for key, value in list(log_record.items()):
            if not isinstance(value, str):
                continue
            lowered = key.lower()
            if any(marker in lowered for marker in _SENSITIVE_KEYS):
                log_record[key] = "***REDACTED***"
            elif "token" in lowered and "tokens" not in lowered:
                log_record[key] = "***REDACTED***"


class TraceLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call extra with the bound context."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "apscheduler")


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """
    Send every record to stdout as one JSON object per line.

    Replaces any handlers already on the root logger, so calling it again
    (for instance from a second ``create_app``) does not duplicate output.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(CustomJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        environment=environment,
    ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)


def get_context_logger(name: str, trace_id: str | None = None) -> logging.Logger:
    """Logger whose records all carry ``trace_id`` when one is given."""
    logger = get_logger(name)
    if trace_id:
        logger = TraceLoggerAdapter(logger, {"trace_id": trace_id})
    return logger


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Log "<operation> completed" with ``latency_ms`` when the block exits,
    whether or not it raised.

        with log_latency(logger, "kb_retrieval", ticket_id=ticket_id):
            hits = await retriever.get_relevant_articles(query, 3)
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
