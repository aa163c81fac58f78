"""Structured logging configuration for wafpolicy."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_configured = False


def configure_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_string: Optional custom format string.
    """
    global _configured

    if _configured:
        logging.getLogger().setLevel(level.upper())
        return

    console = Console(stderr=True)

    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        markup=False,
    )

    if format_string:
        handler.setFormatter(logging.Formatter(format_string))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name.

    Args:
        name: Module name (typically __name__).

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)


def log_to_file(
    filepath: str,
    level: str = "DEBUG",
    format_string: Optional[str] = None,
) -> logging.FileHandler:
    """Add a file handler to the root logger.

    Args:
        filepath: Path to the log file.
        level: Log level for the file handler.
        format_string: Optional custom format string.

    Returns:
        The configured FileHandler.
    """
    handler = logging.FileHandler(filepath)
    handler.setLevel(getattr(logging, level.upper()))

    if format_string:
        handler.setFormatter(logging.Formatter(format_string))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )

    logging.getLogger().addHandler(handler)
    return handler
