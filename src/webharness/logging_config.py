"""Logging setup for webharness."""

import logging
import sys
from typing import TextIO

from webharness.config import CONFIG

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third party loggers that are chatty at INFO/DEBUG
NOISY_LOGGERS = ('httpx', 'httpcore', 'websockets', 'cdp_use', 'bubus', 'asyncio')

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
}


def setup_logging(level: str | int | None = None, stream: TextIO | None = None, force: bool = False) -> logging.Logger:
    """Configure the root logger once and return the package logger.

    Args:
        level: Level name or number. Defaults to ``WEBHARNESS_LOGGING_LEVEL``.
        stream: Output stream, stderr by default.
        force: Replace handlers installed by an earlier call.
    """
    if level is None:
        level = CONFIG.LOGGING_LEVEL
    if isinstance(level, str):
        level = _LEVELS.get(level.lower(), logging.INFO)

    logging.basicConfig(stream=stream or sys.stderr, level=level, format=LOG_FORMAT, force=force)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger = logging.getLogger('webharness')
    logger.setLevel(level)
    return logger
