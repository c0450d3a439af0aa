"""
Logging setup for maps-scrape-bot.

Module loggers share one layout: a console handler on stdout and a rotating
file per logger name under LOG_DIR. Levels come from LOG_LEVEL unless the
caller passes one.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv


load_dotenv()

CONSOLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5


def resolve_level(log_level: Optional[Union[str, int]] = None) -> int:
    """Numeric level from a name, a number, or LOG_LEVEL (INFO if unknown)."""
    if isinstance(log_level, int):
        return log_level
    name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def log_path_for(name: str) -> Path:
    logs_dir = Path(os.getenv("LOG_DIR", "logs"))
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir / f"{name}.log"


def setup_logging(
    name: str = "maps-scrape-bot",
    log_level: Optional[Union[str, int]] = None,
    log_file: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """
    (Re)configure a named logger.

    Existing handlers are closed first, so calling this again (e.g. after the
    CLI has read MAPS_SCRAPER_LOG_LEVEL) just changes the level.

    Args:
        name: Logger name, also the log file stem
        log_level: Level name or number (default: LOG_LEVEL env var or INFO)
        log_file: Log file path (default: $LOG_DIR/<name>.log)
        console: Also log to stdout

    Returns:
        Configured logger
    """
    level = resolve_level(log_level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    if console:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(stream)

    file_handler = RotatingFileHandler(
        log_file or log_path_for(name),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)

    for handler in logger.handlers:
        handler.setLevel(level)

    logger.debug(f"Logging initialized: level={logging.getLevelName(level)}, file={file_handler.baseFilename}")
    return logger


def get_logger(name: str = "maps-scrape-bot") -> logging.Logger:
    """Module logger, configured on first use."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        setup_logging(name)
    return logger
