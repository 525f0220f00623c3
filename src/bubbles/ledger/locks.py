"""Transaction scope, row locking and contention retry for ledger writes.

Every read-modify-write on accounts runs inside :func:`ledger_transaction`
and locks its rows through :func:`lock_accounts`, always in ascending id
order so concurrent writers cannot deadlock on each other.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from typing import TypeVar

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bubbles.config import get_settings
from bubbles.db.models import Account
from bubbles.errors import AccountNotFound, ContentionTimeout

logger = structlog.get_logger()

T = TypeVar("T")

# lock_not_available, serialization_failure, deadlock_detected
_CONTENTION_SQLSTATES = frozenset({"55P03", "40001", "40P01"})


def _dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def _sqlstate(exc: DBAPIError) -> str | None:
    candidates = [exc.orig, getattr(exc.orig, "__cause__", None)]
    for candidate in candidates:
        if candidate is None:
            continue
        for attr in ("sqlstate", "pgcode"):
            code = getattr(candidate, attr, None)
            if code:
                return str(code)
    return None


def is_contention_error(exc: DBAPIError) -> bool:
    """True for lock timeouts, deadlocks and serialization failures."""
    if _sqlstate(exc) in _CONTENTION_SQLSTATES:
        return True
    # SQLite reports writer contention only through the message.
    return "database is locked" in str(exc.orig)


@asynccontextmanager
async def ledger_transaction(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block in one transaction: commit on success, roll back on any error.

    On PostgreSQL the transaction runs at the configured isolation level
    with ``lock_timeout`` applied, and contention errors surface as
    :class:`ContentionTimeout`.
    """
    settings = get_settings()
    try:
        if _dialect_name(db) == "postgresql":
            if not db.in_transaction():
                await db.connection(
                    execution_options={"isolation_level": settings.ledger_isolation_level},
                )
            await db.execute(text(f"SET LOCAL lock_timeout = {int(settings.lock_timeout_ms)}"))
        yield db
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        if is_contention_error(exc):
            logger.warning("ledger_contention", error=str(exc.orig))
            raise ContentionTimeout from exc
        raise
    except BaseException:
        await db.rollback()
        raise


async def lock_accounts(db: AsyncSession, account_ids: Iterable[int]) -> dict[int, Account]:
    """Lock the given accounts ``FOR UPDATE`` in ascending id order.

    Raises AccountNotFound if any id is missing.
    """
    ids = sorted(set(account_ids))
    if not ids:
        return {}
    result = await db.execute(
        select(Account)
        .where(Account.id.in_(ids))
        .order_by(Account.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    accounts = {account.id: account for account in result.scalars().all()}
    missing = [account_id for account_id in ids if account_id not in accounts]
    if missing:
        msg = f"Account {missing[0]} not found"
        raise AccountNotFound(msg)
    return accounts


def _log_retry(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.info("ledger_retry", attempt=retry_state.attempt_number, delay_seconds=delay)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int | None = None,
    base_delay_ms: int | None = None,
) -> T:
    """Run ``operation`` again on ContentionTimeout with exponential backoff."""
    settings = get_settings()
    attempts = attempts or settings.contention_retry_attempts
    base_delay_ms = settings.contention_retry_base_delay_ms if base_delay_ms is None else base_delay_ms

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay_ms / 1000, min=0, max=2),
        retry=retry_if_exception_type(ContentionTimeout),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await operation()
    raise AssertionError("unreachable")  # pragma: no cover
