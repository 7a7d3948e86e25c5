# log.py
from __future__ import annotations

import logging
import sys
from typing import IO, Optional

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def log_setup(level: str = "info", stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Configure the package logger.

    Unknown level names fall back to WARNING.
    """
    logger = logging.getLogger("droneprov")

    lvl = _LEVELS.get(level.lower())
    if lvl is None:
        logger.warning("Unable to use the %s level. Defaulting to warning.", level)
        lvl = logging.WARNING

    for h in list(logger.handlers):
        logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(lvl)
    return logger
