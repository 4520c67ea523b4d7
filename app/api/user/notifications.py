from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from app.core.deps import CurrentUserIdDep, NotificationServiceDep
from app.core.time import to_iso
from app.models.notification import Notification
from app.models.user import User

router = APIRouter(prefix="/notifications", tags=["notifications"])

# --- Schemas ---

class NotificationResponse(BaseModel):
    id: str
    type: str
    message: str
    from_user_id: Optional[str] = None
    from_username: Optional[str] = None
    from_avatar_url: Optional[str] = None
    post_id: Optional[str] = None
    is_read: bool
    created_at: Optional[str]


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]


class NotificationCountResponse(BaseModel):
    count: int


class NotificationReadResponse(BaseModel):
    id: str
    is_read: bool


class MarkAllReadResponse(BaseModel):
    marked: int


def _notification_response(notification: Notification, sender: Optional[User]) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        type=notification.type,
        message=notification.message,
        from_user_id=notification.from_user_id,
        from_username=sender.username if sender else None,
        from_avatar_url=sender.avatar_url if sender else None,
        post_id=notification.post_id,
        is_read=notification.is_read,
        created_at=to_iso(notification.created_at),
    )

# --- Endpoints ---

@router.get("", response_model=NotificationListResponse)
async def list_notifications(user_id: CurrentUserIdDep, notifications: NotificationServiceDep):
    rows = await notifications.list_for(user_id)
    return NotificationListResponse(
        notifications=[_notification_response(n, sender) for n, sender in rows]
    )


@router.get("/count", response_model=NotificationCountResponse)
async def count_unread(user_id: CurrentUserIdDep, notifications: NotificationServiceDep):
    return NotificationCountResponse(count=await notifications.unread_count(user_id))


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(user_id: CurrentUserIdDep, notifications: NotificationServiceDep):
    return MarkAllReadResponse(marked=await notifications.mark_all_read(user_id))


@router.post("/{notification_id}/read", response_model=NotificationReadResponse)
async def mark_read(notification_id: str, user_id: CurrentUserIdDep, notifications: NotificationServiceDep):
    notification = await notifications.mark_read(notification_id, user_id)
    return NotificationReadResponse(id=notification.id, is_read=notification.is_read)
