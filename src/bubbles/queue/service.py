"""Queue operations that own their transaction."""

from __future__ import annotations

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account
from bubbles.ledger.locks import ledger_transaction, lock_accounts
from bubbles.queue.allocator import QueueMove, grant_queue_slots, rebalance_positions
from bubbles.queue.top_user import recompute_top_user

logger = structlog.get_logger()


async def rebalance_queue(db: AsyncSession) -> list[QueueMove]:
    """Compact queue positions in one serialized transaction.

    A failure rolls the whole pass back; the next invocation starts over
    from whatever is committed.
    """
    async with ledger_transaction(db):
        moves = await rebalance_positions(db)
    logger.info("queue_rebalanced", moved=len(moves))
    return moves


async def refresh_queue(db: AsyncSession) -> int | None:
    """Rebalance then recompute the top of queue, each in its own transaction.

    Failures are logged and swallowed: both passes are idempotent and the
    scheduled refresh repairs whatever a failed pass left behind.
    """
    try:
        await rebalance_queue(db)
    except Exception:
        logger.warning("queue_rebalance_failed", exc_info=True)
    try:
        return await recompute_top_user(db)
    except Exception:
        logger.warning("top_user_recompute_failed", exc_info=True)
        return None


async def open_queue_slots(db: AsyncSession, account_id: int, count: int) -> Account:
    """Open ``count`` slots for an account, queueing it if needed."""
    async with ledger_transaction(db):
        accounts = await lock_accounts(db, [account_id])
        account = await grant_queue_slots(db, accounts[account_id], count)
    await refresh_queue(db)
    return account


async def get_queue(db: AsyncSession, limit: int = 100, offset: int = 0) -> tuple[list[Account], int]:
    """Queued accounts in position order."""
    total_result = await db.execute(
        select(func.count()).select_from(Account).where(Account.queue_position > 0)
    )
    total = total_result.scalar_one()
    result = await db.execute(
        select(Account)
        .where(Account.queue_position > 0)
        .order_by(Account.queue_position, Account.id)
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def get_top_account(db: AsyncSession) -> Account | None:
    result = await db.execute(
        select(Account).where(Account.is_top_of_queue.is_(True)).order_by(Account.id).limit(1)
    )
    return result.scalar_one_or_none()
