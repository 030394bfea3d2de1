"""Console and file logging for command-line runs.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached here, once per run, to the ``vol2mesh`` package logger.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

LOGGER_NAME = "vol2mesh"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Union[str, os.PathLike]] = None,
) -> logging.Logger:
    """Attach a stdout handler (and optionally a file handler) to the package logger.

    Parameters
    ----------
    level:
        Threshold for the logger and every handler, e.g. ``logging.DEBUG``.
    log_file:
        When given, the log is also written to this file (truncated first).

    Returns
    -------
    logging.Logger
        The ``vol2mesh`` logger.  Handlers from a previous call are closed
        and replaced, so repeated calls never duplicate output.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug("Logging initialized (file: %s)", log_file or "none")
    return logger
