from __future__ import annotations

from datetime import datetime
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.api.dependencies.session import require_caller
from mealshare_api.core.clock import as_utc
from mealshare_api.db.session import get_session
from mealshare_api.models.notification import Notification
from mealshare_api.models.user import User

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: UUID
    type: str
    message: str
    read: bool
    createdAt: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class NotificationUpdateRequest(BaseModel):
    notificationId: UUID = Field(..., description="Notification to update")
    read: bool = Field(True, description="Whether the notification has been read")


def _serialize(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        type=notification.type.value,
        message=notification.message,
        read=bool(notification.read),
        createdAt=as_utc(notification.created_at),
    )


@router.get("", response_model=List[NotificationResponse], status_code=status.HTTP_200_OK)
async def list_notifications(
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> List[NotificationResponse]:
    """List the caller's notifications, newest first."""

    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == current_user.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    return [_serialize(notification) for notification in result.scalars().all()]


@router.patch("", response_model=NotificationResponse, status_code=status.HTTP_200_OK)
async def update_notification(
    payload: NotificationUpdateRequest,
    current_user: User = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    result = await session.execute(
        select(Notification).where(
            Notification.id == payload.notificationId,
            Notification.user_id == current_user.id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

    notification.read = payload.read
    await session.commit()
    await session.refresh(notification)
    return _serialize(notification)
