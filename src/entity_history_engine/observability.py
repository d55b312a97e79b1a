"""Structured logging for the entity history engine.

All modules obtain a logger with get_logger(__name__) and log with keyword
context rather than formatted strings:

    logger.info("Change event appended", entity_id=entity_id, sequence=3)

configure_logging() is called once from the application lifespan. Until then
structlog's defaults apply, which is what tests rely on.
"""

import logging

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog processors and the minimum log level.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        json_logs: Render JSON lines instead of the human-readable console format.
    """
    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a structured logger bound to the given module name.

    Args:
        name: Usually the calling module's __name__.

    Returns:
        A structlog logger accepting keyword context.
    """
    return structlog.get_logger(name)
