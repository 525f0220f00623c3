"""Notification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.database import get_session
from bubbles.db.models import Notification
from bubbles.notifications.schemas import (
    DeliveryStatusRequest,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from bubbles.notifications.service import (
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
    record_delivery_status,
)

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


def _to_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=str(n.id),
        type=n.type,
        title=n.title,
        body=n.body,
        data=n.data or {},
        status=n.status,
        read=n.read,
        timestamp=n.created_at,
    )


@router.get("/accounts/{account_id}/notifications", response_model=NotificationListResponse)
async def list_notifications(
    account_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """List an account's notifications (paginated)."""
    notifications, total = await get_notifications(db, account_id, page, per_page)
    return NotificationListResponse(
        notifications=[_to_response(n) for n in notifications],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/accounts/{account_id}/notifications/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    account_id: int,
    db: AsyncSession = Depends(get_session),
):
    return UnreadCountResponse(count=await get_unread_count(db, account_id))


@router.post("/accounts/{account_id}/notifications/{notification_id}/read", status_code=200)
async def mark_notification_read(
    account_id: int,
    notification_id: int,
    db: AsyncSession = Depends(get_session),
):
    """Mark a notification as read."""
    found = await mark_as_read(db, account_id, notification_id)
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return {"detail": "Notification marked as read"}


@router.post("/accounts/{account_id}/notifications/read-all", status_code=200)
async def mark_all_read(
    account_id: int,
    db: AsyncSession = Depends(get_session),
):
    """Mark all notifications as read."""
    count = await mark_all_as_read(db, account_id)
    await db.commit()
    return {"detail": f"Marked {count} notifications as read"}


@router.post("/notifications/{notification_id}/delivery", response_model=NotificationResponse)
async def delivery_status(
    notification_id: int,
    body: DeliveryStatusRequest,
    db: AsyncSession = Depends(get_session),
):
    """Delivery collaborator callback."""
    notification = await record_delivery_status(db, notification_id, body.delivered, body.error)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return _to_response(notification)
