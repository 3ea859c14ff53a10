"""
retry.py
========
Bounded retry for store operations under multi-process contention.

The daemon and a front-end running in "direct" mode may write to the same
SQLite file at the same time. SQLite answers the loser with SQLITE_BUSY (or a
transient I/O error when the file lives in a synced folder); those are retried
with exponential backoff: 200ms, 400ms, 800ms, 1600ms, 3200ms. Anything else is
raised immediately.

Every retried callable must open its own session so that each attempt is a
fresh transaction.
"""

from __future__ import annotations

import functools
import sqlite3
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from .logging_setup import get_logger

logger = get_logger("feedpilot.retry")

T = TypeVar("T")

MAX_RETRIES = 5
BASE_DELAY = 0.2  # seconds

# SQLITE_BUSY, SQLITE_LOCKED, SQLITE_IOERR and the extended codes seen on synced folders
TRANSIENT_SQLITE_CODES = frozenset({
    5,     # SQLITE_BUSY
    6,     # SQLITE_LOCKED
    10,    # SQLITE_IOERR
    266,   # SQLITE_IOERR_READ
    522,   # SQLITE_IOERR_SHORT_READ
    1032,  # SQLITE_BUSY_SNAPSHOT
    2314,  # SQLITE_IOERR_WRITE
    3338,  # SQLITE_IOERR_FSYNC
    4618,  # SQLITE_IOERR_DIR_FSYNC
    5386,  # SQLITE_IOERR_LOCK
    5642,  # SQLITE_IOERR_CLOSE
})

TRANSIENT_MESSAGES = ("database is locked", "database table is locked", "disk i/o error")


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        exc = exc.orig
    if not isinstance(exc, sqlite3.Error):
        return False
    code = getattr(exc, "sqlite_errorcode", None)
    if code in TRANSIENT_SQLITE_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGES)


def backoff_delay(attempt: int) -> float:
    """Delay before retry number `attempt` (1-based)."""
    return BASE_DELAY * 2 ** max(0, attempt - 1)


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.debug(
            f"Transient database error in {label}, retrying "
            f"(attempt {state.attempt_number}/{MAX_RETRIES}): {exc}"
        )
    return before_sleep


def retrying(label: str = "db") -> AsyncRetrying:
    return AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        stop=stop_after_attempt(MAX_RETRIES + 1),
        wait=lambda state: backoff_delay(state.attempt_number),
        before_sleep=_log_retry(label),
        reraise=True,
    )


async def run_with_retry(operation: Callable[[], Awaitable[T]], label: str = "db") -> T:
    async for attempt in retrying(label):
        with attempt:
            result = await operation()
    return result


def with_retry(label: Optional[str] = None):
    """Decorator form of `run_with_retry` for coroutine methods."""
    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = label or fn.__name__

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> T:
            return await run_with_retry(lambda: fn(*args, **kwargs), name)

        return wrapper
    return decorator
