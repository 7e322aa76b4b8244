"""Structured logging for the daemon: structlog over stdlib logging.

Job runs bind ``job=<name>`` through structlog.contextvars, so every event a
run emits (including those of the store and node client it calls) carries the
job name. Third-party stdlib loggers (aiohttp, uvicorn, aiosqlite) are routed
through the same renderer.
"""

import logging

import structlog

_QUIET_LOGGERS = ("aiohttp.access", "uvicorn.access", "aiosqlite")


def _drop_color_message_key(_, __, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """uvicorn duplicates its message in ``color_message``."""
    event_dict.pop("color_message", None)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure structlog and the root stdlib logger.

    Args:
        log_level: Root level name (DEBUG, INFO, ...). Unknown names fall back to INFO.
        log_format: "json" for machine-readable lines, anything else renders
                    for a console.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _drop_color_message_key,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format.lower() == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
