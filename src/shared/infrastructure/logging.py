"""
Structured Logging
==================

JSON-structured logging for the workflow engine.

Provides:
- Structured JSON logs (parseable by log aggregators)
- Environment and correlation ID fields on every record
- Redaction of secrets such as webhook URLs
- Latency timing for sweeps and other long operations

Usage:
    from src.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Incident escalated", extra={"incident_id": "INC-001"})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"
SENSITIVE_KEY_PARTS = ("password", "secret", "token", "api_key", "webhook_url")


class EnvironmentFilter(logging.Filter):
    """Stamps the deployment environment onto every record."""

    def __init__(self, environment: str):
        super().__init__()
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "environment"):
            record.environment = self.environment
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with timestamp, environment and correlation ID fields.

    String values under sensitive-looking keys are replaced before output.
    """

    def add_fields(
        self,
        log_record: logging.LogRecord,
        record_dict: dict[str, Any],
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record_dict, message_dict)

        if not record_dict.get("timestamp"):
            record_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

        if hasattr(log_record, "correlation_id"):
            record_dict["correlation_id"] = log_record.correlation_id

        record_dict["environment"] = getattr(log_record, "environment", "unknown")

        for key, value in list(record_dict.items()):
            if isinstance(value, str) and any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
                record_dict[key] = REDACTED


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
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(EnvironmentFilter(environment))
    handler.setFormatter(CustomJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically for ``__name__``)."""
    return logging.getLogger(name)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "escalation_sweep", interval_seconds=60):
            report = await service.run_sweep()
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
