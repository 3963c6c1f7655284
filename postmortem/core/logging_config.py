"""
Logging setup for the backend process.

All package loggers ("backend", "postmortem", "llm") share one console
handler and one rotating log file under config.logs_dir. Modules only call
logging.getLogger("<package>.<area>"); handlers are attached here, once,
by the process entry point.
"""

import logging
import logging.handlers
from typing import Iterable, Optional

from .config import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_LOGGERS = ("backend", "postmortem", "llm")


def _build_handlers(log_file_name: str, level: str) -> list:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    rotating = logging.handlers.RotatingFileHandler(
        config.logs_dir / log_file_name,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8",
    )
    for handler in (console, rotating):
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return [console, rotating]


def setup_logging(
    names: Iterable[str] = DEFAULT_LOGGERS,
    level: Optional[str] = None,
    log_file_name: str = "postmortem.log",
) -> None:
    """
    Attach the shared handlers to each named logger.

    Args:
        names: Top-level logger names; child loggers such as "backend.api"
            propagate to them.
        level: Overrides config.log_level.
        log_file_name: File created under config.logs_dir.

    Loggers that already have handlers are left alone, so calling this twice
    does not duplicate output.
    """
    level = (level or config.log_level).upper()
    handlers = None

    for name in names:
        logger = logging.getLogger(name)
        if logger.handlers:
            continue
        if handlers is None:
            handlers = _build_handlers(log_file_name, level)
        logger.setLevel(level)
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False
