"""Notification outbox service.

Notifications are:
1. Written to the outbox in the same transaction as the ledger change
2. Published by the dispatcher (Redis pub/sub -> delivery collaborator)
3. Confirmed or failed through the delivery-status callback

Types: support, slot_completed, payback, donation, giveaway, reminder, system
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.db.models import Notification

logger = logging.getLogger(__name__)

VALID_TYPES = {"support", "slot_completed", "payback", "donation", "giveaway", "reminder", "system"}

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"


async def enqueue_notification(
    db: AsyncSession,
    account_id: int,
    type_: str,
    title: str,
    body: str | None = None,
    data: dict[str, Any] | None = None,
) -> Notification:
    """Add a pending notification to the outbox. Caller owns the transaction."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {VALID_TYPES}")

    notification = Notification(
        account_id=account_id,
        type=type_,
        title=title,
        body=body,
        data=data or {},
        status=STATUS_PENDING,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    await db.flush()
    return notification


async def record_delivery_status(
    db: AsyncSession,
    notification_id: int,
    delivered: bool,
    error: str | None = None,
) -> Notification | None:
    """Delivery collaborator callback. Returns None if the notification is unknown."""
    notification = await db.get(Notification, notification_id)
    if notification is None:
        return None

    if delivered:
        notification.status = STATUS_DELIVERED
        notification.delivered_at = datetime.now(timezone.utc)
        notification.error = None
    else:
        notification.status = STATUS_FAILED
        notification.error = error or "delivery failed"
    await db.flush()
    return notification


async def get_notifications(
    db: AsyncSession,
    account_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Notification], int]:
    """Get an account's notifications (paginated, most recent first)."""
    offset = (page - 1) * per_page

    total_result = await db.execute(
        select(func.count()).select_from(Notification).where(Notification.account_id == account_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(Notification)
        .where(Notification.account_id == account_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    notifications = list(result.scalars().all())
    return notifications, total


async def mark_as_read(db: AsyncSession, account_id: int, notification_id: int) -> bool:
    """Mark a single notification as read. Returns True if found."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.account_id == account_id)
        .values(read=True)
    )
    await db.flush()
    return result.rowcount > 0


async def mark_all_as_read(db: AsyncSession, account_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.account_id == account_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.flush()
    return result.rowcount


async def get_unread_count(db: AsyncSession, account_id: int) -> int:
    """Get count of unread notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.account_id == account_id, Notification.read.is_(False))
    )
    return result.scalar_one()
