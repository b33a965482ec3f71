"""Logging configuration for clip ingestion."""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: int = logging.INFO) -> None:
    """Configure stdlib logging and route structlog through it."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_attempt(attempt_id: str) -> None:
    """Attach the ingestion attempt id to every structlog event in this context."""
    structlog.contextvars.bind_contextvars(attempt_id=attempt_id)


def clear_attempt() -> None:
    structlog.contextvars.unbind_contextvars("attempt_id")
