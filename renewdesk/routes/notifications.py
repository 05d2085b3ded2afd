import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from renewdesk.database import get_db
from renewdesk.middleware.auth import get_current_user
from renewdesk.models.notification import AppNotification

logger = structlog.get_logger()
router = APIRouter()


class NotificationResponse(BaseModel):
    id: str
    title: str
    body: str
    type: str
    category: str
    entity_id: Optional[str] = None
    link: Optional[str] = None
    is_read: bool = False
    created_at: str


def _to_response(row: AppNotification) -> NotificationResponse:
    return NotificationResponse(
        id=str(row.id),
        title=row.title,
        body=row.body,
        type=row.type,
        category=row.category,
        entity_id=row.entity_id,
        link=row.link,
        is_read=bool(row.is_read),
        created_at=row.created_at.isoformat(),
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Latest in-app notifications (renewal reminders) for the logged-in user."""
    q = select(AppNotification).where(AppNotification.user_id == current_user["user_id"])
    if unread_only:
        q = q.where(AppNotification.is_read == False)  # noqa: E712
    result = await db.execute(q.order_by(AppNotification.created_at.desc()).limit(50))
    return [_to_response(row) for row in result.scalars().all()]


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AppNotification).where(
            AppNotification.id == notification_id,
            AppNotification.user_id == current_user["user_id"],
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise HTTPException(
            status_code=404,
            detail={"error": {"code": "NOTIFICATION_NOT_FOUND", "message": "Notification not found"}},
        )

    notification.is_read = True
    await db.flush()
    return _to_response(notification)
