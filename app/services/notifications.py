"""
In-app notifications.

Other services call ``notify`` inside their own transaction and commit it
together with the change being announced; nothing is sent for a user's
actions on their own content.
"""

from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.core.time import Clock, utcnow
from app.models.notification import Notification
from app.models.user import User

logger = get_logger(__name__)

FOLLOW = "follow"
LIKE = "like"
COMMENT = "comment"
FRIEND_REQUEST = "friend_request"
FRIEND_ACCEPT = "friend_accept"


class NotificationService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    async def notify(
        self,
        user_id: str,
        type: str,
        message: str,
        from_user_id: Optional[str] = None,
        post_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Stage a notification; the caller commits"""
        if from_user_id is not None and from_user_id == user_id:
            return None
        notification = Notification(
            user_id=user_id,
            type=type,
            message=message,
            from_user_id=from_user_id,
            post_id=post_id,
            is_read=False,
            created_at=self.clock(),
        )
        self.db.add(notification)
        await self.db.flush()
        logger.info("notification.created", notification_id=notification.id, user_id=user_id, type=type)
        return notification

    async def list_for(
        self,
        user_id: str,
        limit: int = settings.notifications_page_size,
    ) -> List[tuple[Notification, Optional[User]]]:
        """Newest first, each with the user who triggered it (if any)"""
        sender = aliased(User)
        stmt = (
            select(Notification, sender)
            .outerjoin(sender, sender.id == Notification.from_user_id)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return [(row[0], row[1]) for row in (await self.db.execute(stmt)).all()]

    async def unread_count(self, user_id: str) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def mark_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        notification.is_read = True
        await self.db.commit()
        return notification

    async def mark_all_read(self, user_id: str) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
