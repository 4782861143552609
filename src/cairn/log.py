"""Structured logging setup using structlog.

One shared processor chain (context vars, log level, ISO timestamps) feeds
either a coloured ConsoleRenderer or a JSONRenderer. JSON output is chosen
with ``json_output=True``, ``CAIRN_LOG_FORMAT=json`` or ``APP_ENV=production``.

Standard-library ``logging`` is rewired through the same formatter so that
LiteLLM and httpx records come out in the same shape.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def configure_logging(log_level: str = "WARNING", json_output: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON rendering regardless of the environment.
    """
    use_json = (
        json_output
        or os.environ.get("CAIRN_LOG_FORMAT", "").lower() == "json"
        or os.environ.get("APP_ENV") == "production"
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    level = logging.getLevelName(log_level.upper())
    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
