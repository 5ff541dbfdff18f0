"""Structured logging configuration.

Purpose: JSON-formatted logs with per-request tracing for every backend call.

Pattern: structlog with standard library integration.
"""
import logging
import sys
import uuid

import structlog


def setup_structured_logging(log_level: str = "INFO"):
    """
    Configure structured logging for the client.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False)
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper())
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get logger instance with structured logging.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def generate_request_id() -> str:
    """Generate unique request ID sent as X-Request-ID."""
    return f"req-{uuid.uuid4().hex[:12]}"
