"""Structured logging configuration using structlog.

Provides JSON-formatted logs with consistent context including:
- book_path: The EPUB file currently open (when available)
- task_name: Background task name (e.g. page_locations)
- timestamp: ISO8601 formatted timestamp

Usage:
    from folio.logging import get_logger, configure_logging

    # Configure once at startup
    configure_logging()

    # Get a logger for a module
    logger = get_logger(__name__)
    logger.info("something_happened", extra_field="value")

Background Task Logging:
    from folio.logging import configure_task_logging, get_logger

    def run():
        configure_task_logging(task_name="page_locations", book_path=path)
        logger = get_logger(__name__)
        logger.info("task_started")
"""

import logging
import sys
from contextvars import ContextVar

import structlog

# Context variables for book-scoped logging
book_path_var: ContextVar[str | None] = ContextVar("book_path", default=None)
task_name_var: ContextVar[str | None] = ContextVar("task_name", default=None)


def add_book_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Add book context to all log entries.

    Injects all non-None ContextVar values into the log event dict.
    """
    book_path = book_path_var.get()
    task_name = task_name_var.get()

    if book_path:
        event_dict["book_path"] = book_path
    if task_name:
        event_dict["task_name"] = task_name

    return event_dict


def configure_logging(json_format: bool = True, level: int | str = logging.INFO) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs. If False, output console-friendly logs.
        level: Root logger level.
    """
    # Shared processors for both stdlib and structlog loggers
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_book_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure stdlib logging to use structlog formatting
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Pillow logs every plugin it probes at debug level
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        A bound structlog logger.
    """
    return structlog.get_logger(name)


def set_book_context(book_path: str | None) -> None:
    """Set the open book for the current context."""
    book_path_var.set(book_path)


def clear_book_context() -> None:
    """Clear book context when the file is closed."""
    book_path_var.set(None)


def configure_task_logging(
    task_name: str | None = None,
    book_path: str | None = None,
) -> None:
    """Configure logging context for a background task.

    Call this at the start of the task thread; context variables do not
    leak from the thread that started it.

    Args:
        task_name: The name of the background task.
        book_path: The EPUB file the task works on.
    """
    task_name_var.set(task_name)
    book_path_var.set(book_path)


def clear_task_context() -> None:
    """Clear task context at the end of a task."""
    task_name_var.set(None)
    book_path_var.set(None)
