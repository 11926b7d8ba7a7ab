"""Logging for the notification service.

Each component (api, worker, scheduler, content, audio, mcp) logs through a
named logger that writes to its own rotating file under ``settings.LOG_DIR``
and to the console, at ``settings.LOG_LEVEL``.
"""

import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional

from config import settings

LOG_FORMAT = '[%(asctime)s] %(levelname)s - %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

MAX_BYTES = 10 * 1024 * 1024  # 10MB
BACKUP_COUNT = 5

NOISY_LOGGERS = ('uvicorn', 'uvicorn.access', 'fastapi', 'sqlalchemy', 'httpx', 'httpcore', 'mcp')


def log_dir() -> str:
    """Resolve (and create) the log directory; relative paths sit beside this module."""
    path = settings.LOG_DIR
    if not os.path.isabs(path):
        path = os.path.join(os.path.dirname(os.path.abspath(__file__)), path)
    os.makedirs(path, exist_ok=True)
    return path


def setup_logger(name: str, log_file: str = 'service.log', level: Optional[int] = None) -> logging.Logger:
    """Setup a component logger with rotation.

    Args:
        name: Logger name (usually __name__)
        log_file: Log file of the component (e.g., 'worker.log', 'scheduler.log')
        level: Overrides settings.LOG_LEVEL

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = (
        RotatingFileHandler(
            os.path.join(log_dir(), log_file),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        ),
        logging.StreamHandler(),
    )
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def quiet_third_party(level: int = logging.WARNING):
    """Reduce library noise so component logs stay readable."""
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(level)


quiet_third_party()
