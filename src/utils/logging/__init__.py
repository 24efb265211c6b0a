"""
Structured logging for the reconciliation service

Usage:
    from utils.logging import configure_from_env, ContextLogger

    configure_from_env()

    logger = ContextLogger(__name__, dataset_id="customers")
    logger.info("Starting run", trigger="schedule")
"""

from .config import configure_from_env, get_logger, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "get_logger",
    "configure_from_env",
    "shutdown_logging",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
