"""
Shared helpers.
"""
import logging
from logging import Logger, StreamHandler

from pythonjsonlogger.json import JsonFormatter

from app.core import config


def get_logger(name: str) -> Logger:
    """
    Get a module logger writing JSON lines to the console.

    Usage:
        log = get_logger(__name__)
        log.info("Role %s created", role.id)
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

    handler = StreamHandler()
    handler.setFormatter(
        JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False

    return logger
