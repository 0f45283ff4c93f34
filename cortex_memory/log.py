"""
Logging setup for the daemon and CLI.

Every module logs through ``logging.getLogger(__name__)``; this module only
attaches handlers to the package logger.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime

_LOGGER_NAME = "cortex_memory"
_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_DATEFMT = "%H:%M:%S"


def setup_logger(
    log_dir: str | None = None,
    level: str = "INFO",
    stream: bool = True,
) -> logging.Logger:
    """Attach a timestamped file handler and optional stderr handler.

    Calling this twice does not duplicate handlers.

    Parameters
    ----------
    log_dir:
        Directory for ``cortex_<timestamp>.log``.  No file handler when None.
    level:
        Level name for the stderr handler.  The file always captures DEBUG.
    stream:
        Whether to also log to stderr.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    if getattr(logger, "_cortex_configured", False):
        return logger

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        fh = logging.FileHandler(
            os.path.join(log_dir, f"cortex_{timestamp}.log"), encoding="utf-8"
        )
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    if stream:
        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(getattr(logging, str(level).upper(), logging.INFO))
        sh.setFormatter(formatter)
        logger.addHandler(sh)

    logger._cortex_configured = True  # type: ignore[attr-defined]
    return logger
