"""
Logging setup for the auditsync command line.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import LoggingConfig


def setup_logging(
    config: Optional[LoggingConfig] = None,
    verbose: bool = False,
    debug: bool = False,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure the ``auditsync`` logger.

    Console output goes through rich. When ``config.file`` is set, records
    are also written to a rotating log file using ``config.format``.
    ``verbose`` or ``debug`` lowers the level to DEBUG; ``debug`` also adds
    source paths and rich tracebacks.
    """
    config = config or LoggingConfig()

    level = getattr(logging, config.level)
    if verbose or debug:
        level = logging.DEBUG

    logger = logging.getLogger("auditsync")
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=debug,
        rich_tracebacks=debug,
        markup=False,
    )
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(config.format))
        logger.addHandler(file_handler)

    return logger
