"""Queue position allocation and rebalancing.

Positions form a dense global ordering starting at 1. Each queued account
occupies a contiguous range of ``queue_slot_count`` positions (at least
one). ``queue_tracker.last_assigned_position`` is the watermark new
accounts are placed after; it never decreases.

Functions here run inside the caller's transaction. Public entry points
that own a transaction live in :mod:`bubbles.queue.service`.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account, QueueTracker
from bubbles.errors import InvalidAmount

logger = structlog.get_logger()

TRACKER_ID = 1


@dataclass(frozen=True)
class QueueMove:
    account_id: int
    old_position: int
    new_position: int


def plan_rebalance(entries: list[tuple[int, int, int]]) -> list[QueueMove]:
    """Compute dense positions for ``(account_id, position, slot_count)`` entries.

    Entries are ordered by (position, account_id); each account starts at
    the running cursor and advances it by ``max(slot_count, 1)``. Only
    accounts whose position changes are returned.

    >>> [m.new_position for m in plan_rebalance([(1, 1, 1), (2, 1, 1), (3, 5, 2)])]
    [2, 3]
    """
    moves: list[QueueMove] = []
    cursor = 1
    for account_id, position, slot_count in sorted(entries, key=lambda e: (e[1], e[0])):
        if position != cursor:
            moves.append(QueueMove(account_id, position, cursor))
        cursor += max(slot_count, 1)
    return moves


async def get_queue_tracker(db: AsyncSession) -> QueueTracker:
    """Lock the singleton tracker row, creating it on first use."""
    result = await db.execute(
        select(QueueTracker)
        .where(QueueTracker.id == TRACKER_ID)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tracker = result.scalar_one_or_none()
    if tracker is None:
        tracker = QueueTracker(id=TRACKER_ID, last_assigned_position=0)
        db.add(tracker)
        await db.flush()
    return tracker


async def assign_initial_position(db: AsyncSession, account: Account) -> bool:
    """Give a brand-new account position 1 when nobody holds it.

    Applies only while the account is unqueued with a zero balance, i.e.
    immediately before its first balance increment. Returns True if a
    position was assigned.
    """
    if account.bubble_balance != 0 or account.queue_position != 0:
        return False

    holder = await db.execute(
        select(Account.id).where(Account.queue_position == 1, Account.id != account.id).limit(1)
    )
    if holder.scalar_one_or_none() is not None:
        return False

    tracker = await get_queue_tracker(db)
    account.queue_position = 1
    tracker.last_assigned_position = max(tracker.last_assigned_position, 1)
    logger.info("queue_initial_position_assigned", account_id=account.id)
    return True


async def grant_queue_slots(db: AsyncSession, account: Account, count: int) -> Account:
    """Open ``count`` new slots for a locked account.

    An unqueued account is placed after the watermark; the watermark
    advances by ``count`` either way.
    """
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        msg = f"Slot count must be a positive integer, got {count!r}"
        raise InvalidAmount(msg)

    tracker = await get_queue_tracker(db)
    if account.queue_position == 0:
        account.queue_position = tracker.last_assigned_position + 1
    tracker.last_assigned_position += count
    account.queue_slot_count += count
    logger.info(
        "queue_slots_granted",
        account_id=account.id,
        count=count,
        position=account.queue_position,
        slot_count=account.queue_slot_count,
    )
    return account


def advance_on_slot_completion(account: Account) -> None:
    """Take an account out of the queue once its last slot completed."""
    account.queue_position = 0
    account.queue_slot_count = 0
    account.slot_progress = "{}"
    account.is_top_of_queue = False


async def rebalance_positions(db: AsyncSession) -> list[QueueMove]:
    """Compact queued positions in the current transaction.

    Rows are locked in id order before any position is rewritten.
    """
    result = await db.execute(
        select(Account)
        .where(Account.queue_position > 0)
        .order_by(Account.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    accounts = {account.id: account for account in result.scalars().all()}
    moves = plan_rebalance(
        [(a.id, a.queue_position, a.queue_slot_count) for a in accounts.values()]
    )
    for move in moves:
        accounts[move.account_id].queue_position = move.new_position

    occupied = sum(max(a.queue_slot_count, 1) for a in accounts.values())
    tracker = await get_queue_tracker(db)
    tracker.last_assigned_position = max(tracker.last_assigned_position, occupied)
    await db.flush()
    return moves
