"""Centralized logging configuration."""

import logging
import sys
from pathlib import Path
from typing import Optional, Sequence
from rich.logging import RichHandler
from rich.console import Console


# Third-party loggers held at WARNING.
QUIET_LOGGERS = ("watchdog",)


def setup_logger(
    name: str = "aliaslog",
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich_console: bool = True,
    quiet: Sequence[str] = QUIET_LOGGERS,
) -> logging.Logger:
    """
    Configure the application logger.

    Console output goes to stderr so command output on stdout stays
    machine-readable; ``log_file`` adds a plain-text copy.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if rich_console:
        # markup off: log messages contain paths and user text with brackets
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            markup=False
        )
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for library in quiet:
        logging.getLogger(library).setLevel(logging.WARNING)

    return logger


class LoggerMixin:
    """Mixin class to add logging capabilities to any class."""

    @property
    def logger(self) -> logging.Logger:
        """Logger named after the concrete class, under its module's logger."""
        return logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
