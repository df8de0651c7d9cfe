"""Logger construction for lockmutex."""

from __future__ import annotations

import logging

from lockmutex.config import log_file, log_level

_LOGGER_NAME = "lockmutex"


def get_logger() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    path = log_file()
    if path is None:
        logger.addHandler(logging.NullHandler())
        return logger

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    logger.setLevel(log_level())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
