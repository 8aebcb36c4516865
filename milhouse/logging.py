import logging
import sys

import structlog

# Libraries that log chatter at INFO we never want next to run output
QUIET_LOGGERS = ("httpx", "asyncio", "watchfiles")


def _shared_processors() -> list:
    return [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
    ]


def _renderer(colors: bool) -> structlog.dev.ConsoleRenderer:
    return structlog.dev.ConsoleRenderer(colors=colors)


def configure_logging(level: str = "INFO", colors: bool | None = None):
    """Route structlog to stderr.

    Colors default to on only for a terminal: the engine's stderr is piped
    into the dashboard log stream, where escape codes would show up verbatim.
    """
    if colors is None:
        colors = sys.stderr.isatty()
    structlog.configure(
        processors=[*_shared_processors(), _renderer(colors)],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None):
    return structlog.get_logger(name or "milhouse")


def uvicorn_log_config(access_level: str = "WARNING", colors: bool = True) -> dict:
    formatter = {
        "()": structlog.stdlib.ProcessorFormatter,
        "processor": _renderer(colors),
        "foreign_pre_chain": _shared_processors(),
    }
    handler = {"formatter": "default", "class": "logging.StreamHandler", "stream": "ext://sys.stderr"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {"default": handler},
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"level": "INFO"},
            # Dashboard polls /api/status every few seconds
            "uvicorn.access": {"handlers": ["default"], "level": access_level, "propagate": False},
        },
    }
