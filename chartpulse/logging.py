"""
ChartPulse - Structured Logging Configuration

structlog with console output in debug mode and JSON lines otherwise.
Logs go to stderr so command output (verdict summaries, crop reports)
stays clean on stdout. The scheduler binds the running cycle number into
the context so capture and vision events carry it too.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.typing import Processor

from chartpulse.config import settings

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "asyncio", "PIL", "langsmith")


def _renderer(debug: bool) -> list[Processor]:
    if debug:
        return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def setup_logging(level: str | None = None, debug: bool | None = None) -> None:
    """
    Configure structlog and stdlib logging for the process.

    Args:
        level: Overrides ``CHARTPULSE_LOG_LEVEL``
        debug: Overrides ``CHARTPULSE_DEBUG`` (console vs JSON rendering)
    """
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    debug = settings.debug if debug is None else debug

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, *_renderer(debug)],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Third-party libraries log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def cycle_context(cycle: int) -> Iterator[None]:
    """Attach ``cycle=<n>`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(cycle=cycle):
        yield


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a bound logger with optional initial context.

    Args:
        name: Logger name (usually __name__)
        **initial_context: Initial context key-value pairs

    Returns:
        Bound logger instance
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def get_capture_logger() -> structlog.BoundLogger:
    return get_logger("chartpulse.capture", component="capture")


def get_vision_logger() -> structlog.BoundLogger:
    return get_logger("chartpulse.vision", component="vision")


def get_scheduler_logger() -> structlog.BoundLogger:
    return get_logger("chartpulse.scheduler", component="scheduler")
