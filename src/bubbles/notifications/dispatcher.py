"""Outbox dispatcher: publish pending notifications and record the outcome."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.config import get_settings
from bubbles.db.models import Notification
from bubbles.notifications.push import publish_notification
from bubbles.notifications.service import STATUS_FAILED, STATUS_PENDING, STATUS_SENT

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    sent: int = 0
    retried: int = 0
    failed: int = 0


async def dispatch_pending_notifications(
    db: AsyncSession,
    redis: object | None,
    limit: int | None = None,
    notification_ids: Sequence[int] | None = None,
) -> DispatchResult:
    """Publish pending outbox rows, oldest first.

    Rows claimed by another dispatcher are skipped. A failed publish bumps
    ``attempts``; after ``notification_max_attempts`` the row is marked
    failed. Without Redis nothing is claimed and rows stay pending.
    """
    result = DispatchResult()
    if redis is None:
        return result

    settings = get_settings()
    stmt = (
        select(Notification)
        .where(Notification.status == STATUS_PENDING)
        .order_by(Notification.id)
        .limit(limit or settings.notification_batch_size)
        .with_for_update(skip_locked=True)
    )
    if notification_ids is not None:
        if not notification_ids:
            return result
        stmt = stmt.where(Notification.id.in_(list(notification_ids)))

    rows = (await db.execute(stmt)).scalars().all()
    now = datetime.now(timezone.utc)

    for notification in rows:
        try:
            await publish_notification(redis, notification)
        except Exception as exc:
            notification.attempts += 1
            notification.error = str(exc) or exc.__class__.__name__
            if notification.attempts >= settings.notification_max_attempts:
                notification.status = STATUS_FAILED
                result.failed += 1
                logger.warning(
                    "Notification %s failed after %d attempts",
                    notification.id, notification.attempts, exc_info=True,
                )
            else:
                result.retried += 1
                logger.warning(
                    "Failed to publish notification %s (attempt %d)",
                    notification.id, notification.attempts, exc_info=True,
                )
            continue

        notification.attempts += 1
        notification.status = STATUS_SENT
        notification.sent_at = now
        notification.error = None
        result.sent += 1

    await db.commit()
    if rows:
        logger.info(
            "Dispatched notifications: %d sent, %d retried, %d failed",
            result.sent, result.retried, result.failed,
        )
    return result
