"""Run a unit of work as one transaction, retrying when a concurrent commit wins."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from eventteams.config import get_settings
from eventteams.errors import ConflictError, TransactionConflict

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure and deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
_SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def is_retryable(exc: BaseException) -> bool:
    """True when ``exc`` means another transaction committed first.

    Unique-constraint races, lock timeouts and serialization failures qualify.
    Any other database error (missing table, lost connection) is a real fault.
    """

    if isinstance(exc, (TransactionConflict, IntegrityError)):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return any(marker in message for marker in _SQLITE_LOCK_MESSAGES)


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    label: str,
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> T:
    """Execute ``work`` and commit; roll back and rerun it on a lost race.

    ``work`` must re-read everything it checks, since each attempt starts from
    a fresh transaction. Typed team errors raised by ``work`` roll back and
    propagate immediately.
    """

    settings = get_settings()
    attempts = max_attempts or settings.tx_max_attempts
    base_delay = settings.tx_backoff_seconds if backoff_seconds is None else backoff_seconds

    # Anything the caller left open (e.g. the auth lookup) ends here so the
    # unit of work gets a transaction of its own.
    if session.in_transaction():
        await session.commit()

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await work(session)
            await session.commit()
            return result
        except BaseException as exc:
            await session.rollback()
            if not is_retryable(exc):
                raise
            if attempt >= attempts:
                _LOGGER.error("%s gave up after %s attempts: %s", label, attempt, exc)
                raise ConflictError(
                    f"{label} could not be committed due to concurrent updates; try again"
                ) from exc
            delay = base_delay * min(2 ** (attempt - 1), 16) * (0.5 + random.random())
            _LOGGER.warning(
                "%s conflicted (attempt %s/%s): %s. Retrying in %.3f seconds...",
                label,
                attempt,
                attempts,
                exc.__class__.__name__,
                delay,
            )
            await asyncio.sleep(delay)


async def run_read(session: AsyncSession, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run a read-only query and end its transaction so no lock lingers."""

    if session.in_transaction():
        await session.commit()
    try:
        result = await work(session)
    except BaseException:
        await session.rollback()
        raise
    await session.commit()
    return result


__all__ = ["RETRYABLE_SQLSTATES", "is_retryable", "run_in_transaction", "run_read"]
