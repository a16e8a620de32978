"""
Logging setup for the Office App service.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

LOGGER_NAME = 'office_app'


def configure_logging(log_level: str = 'INFO', json_format: bool = True) -> logging.Logger:
    """
    Attach a single stdout handler to the package logger.

    Module loggers (``logging.getLogger(__name__)``) propagate into it, so
    calling this more than once is harmless.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        formatter = JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={'levelname': 'level', 'name': 'logger', 'asctime': 'timestamp'},
            datefmt='%Y-%m-%dT%H:%M:%S',
        )
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s', datefmt='%Y-%m-%dT%H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger
