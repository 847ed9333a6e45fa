"""
Structured logging via structlog for request telemetry.

Call configure_logging() once at process start. JSON lines go to stdout in
production and serverless; development gets the colored console renderer.
"""

import logging
import sys

import structlog

TELEMETRY_LOGGER_NAME = "empire.telemetry"


def configure_logging(log_level: str = "INFO", json_output: bool = True):
    """Configure structlog on top of the stdlib root logger."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: str = TELEMETRY_LOGGER_NAME):
    """Get a structured logger; defaults to the request telemetry channel."""
    return structlog.get_logger(name)
