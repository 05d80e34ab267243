"""
Shared helpers.
"""
import logging

from app.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger, configuring the root handler on first use.

    Usage:
        from app.utils import get_logger

        log = get_logger(__name__)
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=config.LOG_LEVEL.upper(), format=_LOG_FORMAT)
    return logging.getLogger(name)
