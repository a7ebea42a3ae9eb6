"""
Logging configuration for querymart.

Only the package logger ("querymart") gets a handler. Module loggers are
its children and propagate to it, so jobs running on scheduler threads
share one stdout stream and one level.
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "querymart"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str = PACKAGE_LOGGER, level: str = "INFO") -> logging.Logger:
    """
    Attach a stdout handler to `name` and set its level.

    Calling it again only updates the level.

    Args:
        name: Logger name, the package logger by default
        level: DEBUG, INFO, WARNING or ERROR

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Module logger under the package logger, which is set up on first use."""
    from querymart.core.config import settings

    setup_logger(PACKAGE_LOGGER, settings.log_level)
    if not name or name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name or PACKAGE_LOGGER)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
