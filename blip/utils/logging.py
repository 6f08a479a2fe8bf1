"""
Structured Logging - structlog configuration shared by the API and the alert job.

JSON lines in production, a readable console renderer in development.
"""

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        json_logs: Render JSON instead of the console format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    # boto and aiohttp are chatty at INFO
    for noisy in ("botocore", "boto3", "urllib3", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))
