"""Publish outbox notifications over Redis pub/sub for the delivery collaborator."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bubbles.db.models import Notification

CHANNEL_TEMPLATE = "notifications:account:{account_id}"


def channel_for(account_id: int) -> str:
    return CHANNEL_TEMPLATE.format(account_id=account_id)


def build_payload(notification: "Notification") -> dict[str, Any]:
    """Format the event the delivery collaborator consumes."""
    return {
        "event": "notification",
        "data": {
            "id": str(notification.id),
            "account_id": notification.account_id,
            "type": notification.type,
            "title": notification.title,
            "body": notification.body,
            "data": notification.data or {},
            "timestamp": (
                notification.created_at.isoformat()
                if notification.created_at
                else None
            ),
        },
    }


async def publish_notification(redis: Any, notification: "Notification") -> None:  # noqa: ANN401
    """Publish one notification to ``notifications:account:{account_id}``.

    The notification must already be flushed (have an ``id``). Errors
    propagate so the dispatcher can record the failed attempt.
    """
    await redis.publish(
        channel_for(notification.account_id),
        json.dumps(build_payload(notification)),
    )
