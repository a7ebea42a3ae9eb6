"""
Core module for querymart.

Provides configuration, logging, errors and metrics.
"""
from querymart.core.config import Settings, settings
from querymart.core.logger import get_logger, setup_logger
from querymart.core.metrics import MetricsContext

__all__ = [
    "Settings",
    "settings",
    "setup_logger",
    "get_logger",
    "MetricsContext",
]
