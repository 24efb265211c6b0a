"""
Retry decorators with exponential backoff for database operations

Provides resilient retry logic for transient failures with:
- Exponential backoff (base 2.0)
- Jitter to prevent thundering herd
- SQLSTATE classification for psycopg2 and pyodbc errors
- Callback support for metrics integration

Usage:
    from utils.retry import retry_database_operation

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def save_records(self, records):
        ...
"""

import logging
import random
import time
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)

# SQLSTATE classes and codes that describe a transient condition.
# 08: connection exception, 40001: serialization failure, 40P01: deadlock,
# 53300: too many connections, 57P0x: server shutting down, HYT0x: ODBC timeout
RETRYABLE_SQLSTATE_PREFIXES = ("08", "40001", "40P01", "53300", "57P01", "57P02", "57P03", "HYT00", "HYT01")

# 57014 is a statement cancelled by statement_timeout; the query would only time out again
NON_RETRYABLE_SQLSTATES = ("57014",)

# Fallback for errors that carry no SQLSTATE
RETRYABLE_PATTERNS = (
    "deadlock",
    "lock wait timeout",
    "server closed the connection",
    "could not connect",
    "connection refused",
    "connection reset",
    "broken pipe",
    "communication link failure",
    "serialization failure",
)

RETRYABLE_EXCEPTION_NAMES = (
    "connectionerror",
    "timeouterror",
    "operationalerror",
    "interfaceerror",
    "poolexhaustederror",
)


def get_sqlstate(exception: BaseException) -> str | None:
    """
    Read the SQLSTATE of a driver error.

    psycopg2 errors carry it as ``pgcode``; pyodbc errors pass it as the
    first of its (state, message) arguments.
    """
    pgcode = getattr(exception, "pgcode", None)
    if isinstance(pgcode, str) and pgcode:
        return pgcode

    args = getattr(exception, "args", ())
    if len(args) >= 2 and isinstance(args[0], str) and len(args[0]) == 5 and args[0].isalnum():
        return args[0].upper()
    return None


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """
    Calculate the delay before the next attempt.

    Args:
        attempt: Zero-based attempt number that just failed
        base_delay: Initial delay in seconds
        max_delay: Upper bound for the delay
        exponential_base: Base for exponential growth
        jitter: Add +/-25% random jitter

    Returns:
        Delay in seconds (never below 0.1 when jitter is applied)
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    if jitter:
        jitter_amount = delay * 0.25
        delay = max(0.1, delay + random.uniform(-jitter_amount, jitter_amount))

    return delay


def is_retryable_db_exception(exception: Exception) -> bool:
    """
    Determine if a database exception is transient.

    The SQLSTATE decides when the driver reports one. Otherwise the
    exception type and message are matched against known transient errors.
    Syntax errors, missing relations, constraint violations and statements
    cancelled by statement_timeout are not retryable.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    sqlstate = get_sqlstate(exception)
    if sqlstate is not None:
        if sqlstate in NON_RETRYABLE_SQLSTATES:
            return False
        return sqlstate.startswith(RETRYABLE_SQLSTATE_PREFIXES)

    exception_str = str(exception).lower()
    exception_type = type(exception).__name__.lower()

    if exception_type in RETRYABLE_EXCEPTION_NAMES:
        return True

    return any(
        pattern in exception_str or pattern in exception_type
        for pattern in RETRYABLE_PATTERNS
    )


def retry_database_operation(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    on_retry: Callable[[int, Exception, float], None] | None = None,
):
    """
    Decorator for database operations with smart exception filtering

    Only retries on transient database errors (connection, timeout, deadlock).
    Non-retryable errors fail immediately.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        on_retry: Callback function(attempt, exception, delay) called on each retry

    Example:
        @retry_database_operation(max_retries=5)
        def execute_query(cursor, query):
            cursor.execute(query)
            return cursor.fetchall()
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            func_name = getattr(func, "__name__", "function")

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except Exception as e:
                    if not is_retryable_db_exception(e):
                        logger.debug(
                            f"Non-retryable database error in {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = compute_backoff_delay(attempt, base_delay, max_delay)

                    logger.warning(
                        f"Retryable database error in {func_name} "
                        f"(attempt {attempt + 1}/{max_retries}): "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        try:
                            on_retry(attempt + 1, e, delay)
                        except Exception as callback_error:
                            logger.error(f"Error in retry callback: {callback_error}")

                    time.sleep(delay)

        return wrapper
    return decorator
