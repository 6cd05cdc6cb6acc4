"""Logging for the flasher service: one rotating file plus the console."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# httpx logs every request at INFO; one per image archive is noise
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logger(
    name: str = "flasher",
    log_file: str = "./logs/flasher.log",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
    level: int = logging.INFO,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """Configure the service root logger.

    Components log through children of ``name`` (``flasher.orchestrator``,
    ``flasher.fastboot``, ``flasher.image_worker``...) and reach the handlers
    installed here by propagation. Calling again only updates the level.

    Args:
        name: Root logger name
        log_file: Log file path, parent directories are created
        max_bytes: Size at which the file is rotated
        backup_count: Rotated files to keep
        level: Level for the logger and its handlers
        quiet: Third-party loggers capped at WARNING

    Returns:
        The configured logger
    """
    for noisy in quiet:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers = [
        RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
