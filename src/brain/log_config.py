"""structlog setup for processes embedding the knowledge core.

Console rendering for local use, JSON lines when BRAIN_LOG_JSON is set.
Events go through the stdlib logging module, so BRAIN_LOG_LEVEL filters
them like any other library logger.
"""

from __future__ import annotations

import logging
import sys

import structlog

from src.brain.config import BrainConfig, get_config


def configure_logging(config: BrainConfig | None = None) -> None:
    """Configure structlog processors and the root log level."""
    config = config or get_config()
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger().setLevel(level)

    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.log_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
