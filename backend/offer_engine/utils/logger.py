"""
Logging utilities.

WHAT: Logging setup for the negotiation engine
WHY: Offer transitions, rejected commands and backend sync retries must be readable in one log
HOW: Root logger with console and file handlers, levels from settings, chatty libraries quieted
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from ..core.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Per-request lines from these drown out offer transitions
NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sse_starlette": logging.INFO,
}


def resolve_level(level_name: Optional[str] = None, debug: Optional[bool] = None) -> int:
    """
    Level for the engine's own loggers.

    DEBUG forces debug output; otherwise LOG_LEVEL is used, falling back to INFO
    for unknown names.
    """
    debug = settings.DEBUG if debug is None else debug
    if debug:
        return logging.DEBUG
    name = (level_name or settings.LOG_LEVEL).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure application logging.

    WHAT: Console handler at the configured level, file handler at DEBUG
    WHY: Store debug lines (history loads, session starts) reach the console when asked for
    HOW: Replace root handlers, then cap third-party loggers

    Args:
        log_file: Override of settings.LOG_FILE

    Returns:
        The configured root logger
    """
    level = resolve_level()
    path = Path(log_file or settings.LOG_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(file_handler)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(noisy_level, level))

    root_logger.info(
        f"Logging initialized (console={logging.getLevelName(level)}, file={path})"
    )
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Module logger, e.g. get_logger(__name__)."""
    return logging.getLogger(name)
