"""Logging configuration.

Console output is colored with colorlog; everything at DEBUG and above also
goes to a rotating log file. Failures handed to the logging failure reporter
are additionally written, with their tracebacks, to a separate failures log.
"""
import logging
import sys
from pathlib import Path
from typing import Optional, Union
from logging.handlers import RotatingFileHandler
import colorlog

from ..config import Config

FAILURES_LOGGER = "slack_archive.failures"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks handlers installed here so a second setup replaces them
_HANDLER_FLAG = "_slack_archive_handler"

NOISY_LOGGERS = ("slack_sdk", "urllib3", "sqlalchemy.engine")


def _resolve_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    if not path.is_absolute():
        path = Config.BASE_DIR / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _rotating_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.setLevel(level)
    setattr(handler, _HANDLER_FLAG, True)
    return handler


def _remove_installed_handlers(logger: logging.Logger):
    for handler in logger.handlers[:]:
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    failures_file: Optional[str] = None
) -> None:
    """Setup console, rotating file and failures logging. Safe to call twice."""
    level_name = (log_level or Config.LOG_LEVEL).upper()
    level = getattr(logging, level_name, logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s" + LOG_FORMAT,
        datefmt=DATE_FORMAT,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    console_handler.setLevel(level)
    setattr(console_handler, _HANDLER_FLAG, True)

    root_logger = logging.getLogger()
    _remove_installed_handlers(root_logger)
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(_resolve_path(log_file or Config.LOG_FILE), logging.DEBUG))

    failures_logger = logging.getLogger(FAILURES_LOGGER)
    _remove_installed_handlers(failures_logger)
    failures_logger.addHandler(
        _rotating_handler(_resolve_path(failures_file or Config.FAILURES_LOG_FILE), logging.ERROR)
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger for module."""
    return logging.getLogger(name)
