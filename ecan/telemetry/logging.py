"""
ECAN — Structured Logging

structlog on top of the stdlib root logger. Events from every system carry
the logger name, level, ISO timestamp and any bound context (``component``
from each service, ``instance_id`` when one is configured).
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from ecan.config import LoggingConfig


def _level(name: str, default: int = logging.INFO) -> int:
    value = getattr(logging, name.upper(), None)
    return value if isinstance(value, int) else default


def _renderer(config: LoggingConfig) -> Any:
    if config.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=config.colors)


def setup_logging(config: LoggingConfig, instance_id: str = "") -> None:
    """Configure structlog and the root handler. Safe to call more than once."""
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.contextvars.clear_contextvars()
    if instance_id:
        structlog.contextvars.bind_contextvars(instance_id=instance_id)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(config),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(config.level))

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    for name, level in config.levels.items():
        logging.getLogger(name).setLevel(_level(level, logging.WARNING))
