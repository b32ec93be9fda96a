"""Rich console logging, plus an optional plain-text log file for long batch runs."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

APP_LOGGER = "ad_media_extractor"
# Third-party chatter that buries the extraction trail
QUIET_LOGGERS = ("asyncio", "aiohttp.access", "aiosqlite")
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

console = Console()


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> logging.Logger:
    """Route every ``ad_media_extractor.*`` logger to a rich console handler.

    Trail events are logged at DEBUG, so ``level="DEBUG"`` prints each step
    of an extraction as it happens. ``log_file`` keeps a timestamped copy.
    Calling this again replaces the handlers of the previous call.
    """
    handlers: list[logging.Handler] = [
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
        )
    ]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger(APP_LOGGER)


def get_logger(name: str = APP_LOGGER) -> logging.Logger:
    return logging.getLogger(name)
