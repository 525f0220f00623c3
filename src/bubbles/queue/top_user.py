"""Top-of-queue resolution.

The top account is the one whose lowest incomplete slot sits at the
smallest absolute queue position (its frontier); ties go to the lowest
account id. The flag is recomputed after queue mutations and on a
schedule, so it is eventually consistent.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account
from bubbles.ledger.constants import SLOT_CAPACITY
from bubbles.ledger.locks import ledger_transaction
from bubbles.ledger.slot_codec import decode_slot_progress

logger = structlog.get_logger()


def frontier_position(position: int, slot_count: int, progress: dict[int, int]) -> int:
    """Absolute queue position of the account's lowest incomplete slot."""
    first_open = next(
        (slot for slot in range(1, slot_count + 1) if progress.get(slot, 0) < SLOT_CAPACITY),
        slot_count,
    )
    return position + first_open - 1


def select_top_account(candidates: Iterable[tuple[int, int, int, dict[int, int]]]) -> int | None:
    """Pick the winner from ``(account_id, position, slot_count, progress)`` rows."""
    best: tuple[int, int] | None = None
    for account_id, position, slot_count, progress in candidates:
        key = (frontier_position(position, slot_count, progress), account_id)
        if best is None or key < best:
            best = key
    return best[1] if best else None


async def resolve_top_user(db: AsyncSession) -> int | None:
    """Clear every flag then set the winner, in the current transaction."""
    result = await db.execute(
        select(
            Account.id,
            Account.queue_position,
            Account.queue_slot_count,
            Account.slot_progress,
        ).where(
            Account.is_active.is_(True),
            Account.queue_position > 0,
            Account.queue_slot_count > 0,
        )
    )
    winner = select_top_account(
        (
            row.id,
            row.queue_position,
            row.queue_slot_count,
            decode_slot_progress(row.slot_progress, row.queue_slot_count, account_id=row.id),
        )
        for row in result
    )

    await db.execute(
        update(Account)
        .where(Account.is_top_of_queue.is_(True))
        .values(is_top_of_queue=False)
        .execution_options(synchronize_session="fetch")
    )
    if winner is not None:
        await db.execute(
            update(Account)
            .where(Account.id == winner)
            .values(is_top_of_queue=True)
            .execution_options(synchronize_session="fetch")
        )
    return winner


async def recompute_top_user(db: AsyncSession) -> int | None:
    """Recompute and persist the top-of-queue flag in its own transaction."""
    async with ledger_transaction(db):
        winner = await resolve_top_user(db)
    logger.info("top_user_recomputed", account_id=winner)
    return winner
