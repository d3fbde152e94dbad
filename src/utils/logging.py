"""Structured JSON logging for pipeline jobs, HTTP requests and chat turns.

Context bound with ``structlog.contextvars`` (the scheduler binds ``job_id``
and ``job_type`` around every handler) is merged into each event, so stage
and adapter logs can be traced back to the job that produced them.
"""

import logging
import os
import sys

import structlog

PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(),
]


def configure_logging(level: str | None = None) -> None:
    """Route structlog through the stdlib root logger at ``level``.

    Args:
        level: Level name; LOG_LEVEL from the environment when omitted,
            INFO when that is unset too.
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    structlog.configure(
        processors=PROCESSORS,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger, configuring logging on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("job_claimed", job_id="123", job_type="discovery")
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(name)
