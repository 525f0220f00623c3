"""One-shot giveaway distribution.

A donor funds the open pool of a category; the donation is split equally
between every eligible account, capped at the pool's per-account amount.
Eligible accounts are active accounts, other than the donor, that have
paid back at least one support. What cannot be split evenly stays in the
pool's ``hold_amount``. Everything happens in one transaction: either
every recipient is credited and the pool is closed, or nothing changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account, ContributionTransaction, GiveawayPool
from bubbles.errors import (
    InsufficientBalance,
    InvalidAmount,
    NoEligibleRecipients,
    PoolInactiveOrExhausted,
    PoolNotFound,
)
from bubbles.ledger.constants import GiveawayCategory, TransactionKind, TransactionStatus
from bubbles.ledger.locks import ledger_transaction, lock_accounts
from bubbles.ledger.service import run_after_commit, validate_amount
from bubbles.notifications.service import enqueue_notification

logger = structlog.get_logger()


@dataclass(frozen=True)
class ShareSplit:
    amount_per_recipient: int
    total_distributed: int
    retained: int


@dataclass(frozen=True)
class GiveawayResult:
    pool_id: int
    recipient_count: int
    amount_per_recipient: int
    total_distributed: int
    retained: int
    donation_transaction_id: int


def split_donation(recipient_count: int, amount_per_account: int, donated_amount: int) -> ShareSplit:
    """Equal shares bounded by both the per-account cap and the donation.

    >>> split_donation(3, 10, 25)
    ShareSplit(amount_per_recipient=8, total_distributed=24, retained=1)
    """
    if recipient_count <= 0:
        return ShareSplit(0, 0, donated_amount)
    budget = min(recipient_count * amount_per_account, donated_amount)
    per = budget // recipient_count
    total = per * recipient_count
    return ShareSplit(per, total, donated_amount - total)


def coerce_category(category: GiveawayCategory | str) -> GiveawayCategory:
    try:
        return GiveawayCategory(category)
    except ValueError:
        msg = f"Unknown giveaway category: {category!r}"
        raise PoolNotFound(msg) from None


def _eligible_ids_query(exclude_account_id: int | None):  # noqa: ANN202
    has_paid_back = exists().where(
        ContributionTransaction.from_account_id == Account.id,
        ContributionTransaction.kind == TransactionKind.PAYBACK.value,
        ContributionTransaction.status == TransactionStatus.COMPLETED.value,
    )
    stmt = select(Account.id).where(Account.is_active.is_(True), has_paid_back).order_by(Account.id)
    if exclude_account_id is not None:
        stmt = stmt.where(Account.id != exclude_account_id)
    return stmt


async def eligible_recipient_ids(db: AsyncSession, exclude_account_id: int | None = None) -> list[int]:
    """Active accounts with at least one completed payback they sent, ascending."""
    result = await db.execute(_eligible_ids_query(exclude_account_id))
    return [row[0] for row in result]


async def _lock_open_pool(db: AsyncSession, category: GiveawayCategory) -> GiveawayPool:
    result = await db.execute(
        select(GiveawayPool)
        .where(GiveawayPool.category == category.value, GiveawayPool.is_distributed.is_(False))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    pool = result.scalar_one_or_none()
    if pool is None:
        any_pool = await db.execute(
            select(GiveawayPool.id).where(GiveawayPool.category == category.value).limit(1)
        )
        if any_pool.scalar_one_or_none() is not None:
            msg = f"The {category.value} pool has already been distributed"
            raise PoolInactiveOrExhausted(msg)
        msg = f"No giveaway pool for {category.value}"
        raise PoolNotFound(msg)
    if not pool.is_active:
        msg = f"The {category.value} pool is disabled"
        raise PoolInactiveOrExhausted(msg)
    return pool


async def distribute_giveaway(
    db: AsyncSession,
    redis: object | None,
    donor_account_id: int,
    category: GiveawayCategory | str,
    donated_amount: int,
) -> GiveawayResult:
    """Fund and distribute the open pool of ``category`` in one transaction.

    Locks the pool row, then the donor, then recipients in ascending id order.
    """
    resolved = coerce_category(category)
    validate_amount(donated_amount, maximum=None)

    async with ledger_transaction(db):
        pool = await _lock_open_pool(db, resolved)
        donor = (await lock_accounts(db, [donor_account_id]))[donor_account_id]
        if donor.bubble_balance < donated_amount:
            msg = f"Balance {donor.bubble_balance} is below {donated_amount}"
            raise InsufficientBalance(msg)

        donor.bubble_balance -= donated_amount
        donation = ContributionTransaction(
            from_account_id=donor.id,
            to_account_id=donor.id,
            amount=donated_amount,
            kind=TransactionKind.DONATION.value,
            status=TransactionStatus.COMPLETED.value,
            is_giveaway=True,
            giveaway_pool_id=pool.id,
            description=f"{resolved.value} giveaway donation",
        )
        db.add(donation)

        recipient_ids = await eligible_recipient_ids(db, exclude_account_id=donor.id)
        if not recipient_ids:
            msg = f"No account is eligible for the {resolved.value} giveaway"
            raise NoEligibleRecipients(msg)

        recipients = await lock_accounts(db, recipient_ids)
        split = split_donation(len(recipients), pool.amount_per_account, donated_amount)
        if split.amount_per_recipient == 0:
            msg = f"{donated_amount} bubbles cannot be split between {len(recipients)} accounts"
            raise InvalidAmount(msg)

        db.add_all(
            ContributionTransaction(
                from_account_id=donor.id,
                to_account_id=recipient_id,
                amount=split.amount_per_recipient,
                kind=TransactionKind.TRANSFER.value,
                status=TransactionStatus.COMPLETED.value,
                is_giveaway=True,
                giveaway_pool_id=pool.id,
                description=f"{resolved.value} giveaway",
            )
            for recipient_id in recipients
        )
        await db.execute(
            update(Account)
            .where(Account.id.in_(list(recipients)))
            .values(bubble_balance=Account.bubble_balance + split.amount_per_recipient)
            .execution_options(synchronize_session="fetch")
        )

        pool.is_distributed = True
        pool.distributed_at = datetime.now(timezone.utc)
        pool.total_amount_distributed += split.total_distributed
        pool.hold_amount += split.retained
        await db.flush()

        notification_ids = []
        for recipient_id in recipients:
            notification = await enqueue_notification(
                db,
                recipient_id,
                "giveaway",
                f"{resolved.value} giveaway",
                f"You received {split.amount_per_recipient} bubbles from the {resolved.value} giveaway.",
                {"pool_id": pool.id, "amount": split.amount_per_recipient},
            )
            notification_ids.append(notification.id)

        result = GiveawayResult(
            pool_id=pool.id,
            recipient_count=len(recipients),
            amount_per_recipient=split.amount_per_recipient,
            total_distributed=split.total_distributed,
            retained=split.retained,
            donation_transaction_id=donation.id,
        )

    logger.info(
        "giveaway_distributed",
        pool_id=result.pool_id,
        category=resolved.value,
        donor_account_id=donor_account_id,
        donated=donated_amount,
        recipients=result.recipient_count,
        per_recipient=result.amount_per_recipient,
        retained=result.retained,
    )
    await run_after_commit(db, redis, notification_ids)
    return result
