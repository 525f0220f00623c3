"""Payback reminders for accounts that owe pending support and can afford it."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Account, ContributionTransaction
from bubbles.ledger.constants import TransactionKind, TransactionStatus
from bubbles.notifications.service import enqueue_notification

logger = logging.getLogger(__name__)


async def find_reminder_targets(db: AsyncSession, min_balance: int) -> list[tuple[int, int, int]]:
    """``(account_id, pending_count, pending_total)`` for active debtors holding ``min_balance``."""
    result = await db.execute(
        select(
            Account.id,
            func.count(ContributionTransaction.id),
            func.sum(ContributionTransaction.amount),
        )
        .join(ContributionTransaction, ContributionTransaction.to_account_id == Account.id)
        .where(
            Account.is_active.is_(True),
            Account.bubble_balance >= min_balance,
            ContributionTransaction.kind == TransactionKind.SUPPORT.value,
            ContributionTransaction.status == TransactionStatus.PENDING.value,
        )
        .group_by(Account.id)
        .order_by(Account.id)
    )
    return [(row[0], int(row[1]), int(row[2])) for row in result]


async def enqueue_payback_reminders(db: AsyncSession, min_balance: int) -> int:
    """Write one reminder per target to the outbox and commit. Returns the count."""
    targets = await find_reminder_targets(db, min_balance)
    for account_id, count, total in targets:
        await enqueue_notification(
            db,
            account_id,
            "reminder",
            "Payback reminder",
            f"You have {count} pending support payment(s) totalling {total} bubbles.",
            {"pending_count": count, "pending_total": total},
        )
    await db.commit()
    logger.info("Queued %d payback reminders", len(targets))
    return len(targets)
