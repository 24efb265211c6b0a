"""
Logger wrappers that carry reconciliation context.

ContextLogger binds identifiers such as dataset_id and run_id once and
attaches them to every message as `extra=` fields.
"""

import logging
from typing import Any


class ContextLogger:
    """
    Logger wrapper that adds contextual information to all log messages

    Usage:
        logger = ContextLogger(__name__, dataset_id="customers")
        run_logger = logger.bind(run_id=42)
        run_logger.info("Source phase complete", rows=1000)
        # Output includes dataset_id, run_id and rows
    """

    def __init__(self, name: str, **context):
        self.logger = logging.getLogger(name)
        self.context = context

    def _log(
        self,
        level: int,
        msg: str,
        *args,
        exc_info=None,
        **kwargs
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        extra = {**self.context, **kwargs}
        # stacklevel points records at the caller rather than this wrapper
        self.logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            extra=extra,
            stacklevel=3,
        )

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, exc_info=None, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, exc_info=exc_info, **kwargs)

    def error(self, msg: str, *args, exc_info=None, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def bind(self, **context) -> "ContextLogger":
        """
        Create a child logger with additional context.

        The parent logger is left unchanged, so one logger per dataset can
        hand out one child per run.

        Args:
            **context: Extra key-value pairs for the child

        Returns:
            New ContextLogger sharing the underlying logger
        """
        return ContextLogger(self.logger.name, **{**self.context, **context})

    def get_context(self) -> dict[str, Any]:
        """Get a copy of the bound context."""
        return self.context.copy()
