"""
ZoneSentinel Logging Configuration

Modules log through the standard library (logging.getLogger(__name__)).
setup_logging() routes those records, and any structlog loggers, through a
single structlog ProcessorFormatter: JSON lines in production, a readable
console format in development.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, List

import structlog

from .config import LoggingConfig


def _shared_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def setup_logging(
    config: Optional[LoggingConfig] = None,
    service_name: str = "zonesentinel",
) -> None:
    """
    Configure structured logging for the process.

    Args:
        config: Level, format and destinations (environment defaults if omitted)
        service_name: Added to every record as "service"
    """
    config = config or LoggingConfig.from_env()

    def _add_service(logger, method_name, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict

    shared = _shared_processors() + [_add_service]

    if config.json_format:
        renderer = structlog.processors.JSONRenderer()
        final = [structlog.processors.format_exc_info, renderer]
    else:
        final = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + final,
    )

    handlers: List[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler())
    if config.file_path:
        handlers.append(logging.FileHandler(config.file_path, encoding="utf-8"))
    if not handlers:
        handlers.append(logging.NullHandler())

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + shared + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Reduce noise from transport libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger bound to the given name."""
    return structlog.get_logger(name)
