"""Giveaway pool administration.

Each category has at most one open (undistributed) pool. Admins create
it, adjust its per-account amount, toggle it, or reset it while it is
still open. Distribution itself lives in :mod:`bubbles.giveaways.distributor`.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import GiveawayPool
from bubbles.errors import PoolAlreadyOpen, PoolNotFound
from bubbles.giveaways.distributor import coerce_category, eligible_recipient_ids, split_donation
from bubbles.ledger.constants import GiveawayCategory
from bubbles.ledger.service import validate_amount

logger = logging.getLogger(__name__)


async def get_open_pool(db: AsyncSession, category: GiveawayCategory | str) -> GiveawayPool | None:
    resolved = coerce_category(category)
    result = await db.execute(
        select(GiveawayPool).where(
            GiveawayPool.category == resolved.value,
            GiveawayPool.is_distributed.is_(False),
        )
    )
    return result.scalar_one_or_none()


async def _require_open_pool(db: AsyncSession, category: GiveawayCategory | str) -> GiveawayPool:
    pool = await get_open_pool(db, category)
    if pool is None:
        msg = f"No open giveaway pool for {coerce_category(category).value}"
        raise PoolNotFound(msg)
    return pool


async def list_pools(db: AsyncSession, include_distributed: bool = False) -> list[GiveawayPool]:
    stmt = select(GiveawayPool).order_by(GiveawayPool.category, GiveawayPool.created_at.desc())
    if not include_distributed:
        stmt = stmt.where(GiveawayPool.is_distributed.is_(False))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_pool(
    db: AsyncSession,
    category: GiveawayCategory | str,
    amount_per_account: int,
    admin_account_id: int | None = None,
) -> GiveawayPool:
    """Open a new pool. Raises PoolAlreadyOpen if the category already has one."""
    resolved = coerce_category(category)
    validate_amount(amount_per_account, maximum=None)
    if await get_open_pool(db, resolved) is not None:
        msg = f"The {resolved.value} category already has an open pool"
        raise PoolAlreadyOpen(msg)

    pool = GiveawayPool(
        category=resolved.value,
        amount_per_account=amount_per_account,
        set_by_admin_id=admin_account_id,
    )
    db.add(pool)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        msg = f"The {resolved.value} category already has an open pool"
        raise PoolAlreadyOpen(msg) from exc
    logger.info("Giveaway pool %d opened for %s (%d per account)", pool.id, resolved.value, amount_per_account)
    return pool


async def update_pool_amount(
    db: AsyncSession,
    category: GiveawayCategory | str,
    amount_per_account: int,
) -> GiveawayPool:
    validate_amount(amount_per_account, maximum=None)
    pool = await _require_open_pool(db, category)
    pool.amount_per_account = amount_per_account
    await db.commit()
    logger.info("Giveaway pool %d amount set to %d", pool.id, amount_per_account)
    return pool


async def toggle_pool(db: AsyncSession, category: GiveawayCategory | str) -> GiveawayPool:
    """Flip ``is_active`` on the open pool."""
    pool = await _require_open_pool(db, category)
    pool.is_active = not pool.is_active
    await db.commit()
    logger.info("Giveaway pool %d active=%s", pool.id, pool.is_active)
    return pool


async def reset_pool(db: AsyncSession, category: GiveawayCategory | str) -> int:
    """Delete the open pool. Distributed pools are history and stay. Returns the deleted id."""
    pool = await _require_open_pool(db, category)
    pool_id = pool.id
    await db.delete(pool)
    await db.commit()
    logger.info("Giveaway pool %d reset", pool_id)
    return pool_id


async def preview_distribution(
    db: AsyncSession,
    category: GiveawayCategory | str,
    donated_amount: int | None = None,
    donor_account_id: int | None = None,
) -> dict[str, int]:
    """Projected split without moving anything.

    Without a donated amount, the projection assumes the donation covers
    every eligible account in full.
    """
    pool = await _require_open_pool(db, category)
    eligible = await eligible_recipient_ids(db, exclude_account_id=donor_account_id)
    count = len(eligible)
    amount = donated_amount if donated_amount is not None else count * pool.amount_per_account
    split = split_donation(count, pool.amount_per_account, amount)
    return {
        "pool_id": pool.id,
        "eligible_count": count,
        "amount_per_account": pool.amount_per_account,
        "donated_amount": amount,
        "amount_per_recipient": split.amount_per_recipient,
        "total_distributed": split.total_distributed,
        "retained": split.retained,
    }
