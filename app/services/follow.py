"""
Follow graph and friend requests.

Following is one-directional and idempotent. A friend request, once
accepted, makes both users follow each other and opens a DM chat between
them directly, skipping the DM request step. DM requests still pending
between the two are accepted along with it; a permanent DM block keeps the
chat closed even between friends.
"""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, StateConflictError, ValidationError
from app.core.logging import get_logger
from app.core.time import Clock, utcnow
from app.models.dm import DmChat
from app.models.friend import Follow, FriendRequest
from app.models.user import User
from app.services.dm import DmService
from app.services.notifications import FOLLOW, FRIEND_ACCEPT, FRIEND_REQUEST, NotificationService

logger = get_logger(__name__)


@dataclass
class AcceptResult:
    request: FriendRequest
    # None while a permanent DM block stands between the two users
    chat: Optional[DmChat]


class FollowService:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock
        self.notifications = NotificationService(db, clock=clock)

    async def _require_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _username(self, user_id: str) -> str:
        user = await self.db.get(User, user_id)
        return user.username if user else "someone"

    async def _find_follow(self, follower_id: str, following_id: str):
        stmt = select(Follow).where(Follow.follower_id == follower_id, Follow.following_id == following_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _add_follow(self, follower_id: str, following_id: str) -> bool:
        if await self._find_follow(follower_id, following_id) is not None:
            return False
        self.db.add(Follow(follower_id=follower_id, following_id=following_id, created_at=self.clock()))
        await self.db.execute(
            update(User).where(User.id == follower_id).values(following_count=User.following_count + 1)
        )
        await self.db.execute(
            update(User).where(User.id == following_id).values(followers_count=User.followers_count + 1)
        )
        return True

    async def follow(self, follower_id: str, following_id: str) -> bool:
        """Returns True when a new follow was created"""
        if follower_id == following_id:
            raise ValidationError("You cannot follow yourself")
        await self._require_user(following_id)
        created = await self._add_follow(follower_id, following_id)
        if created:
            await self.notifications.notify(
                following_id,
                FOLLOW,
                f"{await self._username(follower_id)} started following you",
                from_user_id=follower_id,
            )
        await self.db.commit()
        if created:
            logger.info("user.followed", follower_id=follower_id, following_id=following_id)
        return created

    async def _remove_follow(self, follower_id: str, following_id: str) -> bool:
        existing = await self._find_follow(follower_id, following_id)
        if existing is None:
            return False
        await self.db.delete(existing)
        await self.db.execute(
            update(User)
            .where(User.id == follower_id, User.following_count > 0)
            .values(following_count=User.following_count - 1)
        )
        await self.db.execute(
            update(User)
            .where(User.id == following_id, User.followers_count > 0)
            .values(followers_count=User.followers_count - 1)
        )
        return True

    async def unfollow(self, follower_id: str, following_id: str) -> bool:
        if not await self._remove_follow(follower_id, following_id):
            return False
        await self.db.commit()
        logger.info("user.unfollowed", follower_id=follower_id, following_id=following_id)
        return True

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        return await self._find_follow(follower_id, following_id) is not None

    async def list_followers(self, user_id: str) -> List[User]:
        await self._require_user(user_id)
        stmt = (
            select(User)
            .join(Follow, Follow.follower_id == User.id)
            .where(Follow.following_id == user_id)
            .order_by(Follow.created_at.desc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_following(self, user_id: str) -> List[User]:
        await self._require_user(user_id)
        stmt = (
            select(User)
            .join(Follow, Follow.following_id == User.id)
            .where(Follow.follower_id == user_id)
            .order_by(Follow.created_at.desc())
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def send_friend_request(self, from_user_id: str, to_user_id: str) -> FriendRequest:
        if from_user_id == to_user_id:
            raise ValidationError("You cannot send a friend request to yourself")
        await self._require_user(to_user_id)

        stmt = select(FriendRequest).where(
            or_(
                and_(FriendRequest.from_user_id == from_user_id, FriendRequest.to_user_id == to_user_id),
                and_(FriendRequest.from_user_id == to_user_id, FriendRequest.to_user_id == from_user_id),
            ),
            FriendRequest.status.in_(["pending", "accepted"]),
        )
        existing = (await self.db.execute(stmt)).scalars().first()
        if existing is not None:
            if existing.status == "accepted":
                raise StateConflictError("You are already friends")
            if existing.from_user_id == from_user_id:
                raise StateConflictError("You have already sent a friend request")
            raise StateConflictError("This user has already sent you a friend request")

        request = FriendRequest(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            status="pending",
            created_at=self.clock(),
        )
        self.db.add(request)
        await self.notifications.notify(
            to_user_id,
            FRIEND_REQUEST,
            f"{await self._username(from_user_id)} sent you a friend request",
            from_user_id=from_user_id,
        )
        await self.db.commit()
        logger.info("friend.request.sent", request_id=request.id, from_user_id=from_user_id, to_user_id=to_user_id)
        return request

    async def list_received(self, user_id: str) -> List[tuple[FriendRequest, User]]:
        stmt = (
            select(FriendRequest, User)
            .join(User, User.id == FriendRequest.from_user_id)
            .where(FriendRequest.to_user_id == user_id, FriendRequest.status == "pending")
            .order_by(FriendRequest.created_at.desc())
        )
        return [(row[0], row[1]) for row in (await self.db.execute(stmt)).all()]

    async def _respond(self, request_id: str, user_id: str, status: str) -> FriendRequest:
        request = await self.db.get(FriendRequest, request_id)
        if request is None or request.to_user_id != user_id:
            raise NotFoundError("Friend request not found")
        result = await self.db.execute(
            update(FriendRequest)
            .where(FriendRequest.id == request_id, FriendRequest.status == "pending")
            .values(status=status, responded_at=self.clock())
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise StateConflictError("Friend request is no longer pending")
        return request

    async def accept_friend_request(self, request_id: str, user_id: str) -> AcceptResult:
        request = await self._respond(request_id, user_id, "accepted")
        await self._add_follow(request.from_user_id, request.to_user_id)
        await self._add_follow(request.to_user_id, request.from_user_id)
        chat = await DmService(self.db, clock=self.clock).open_chat(request.from_user_id, request.to_user_id)
        await self.notifications.notify(
            request.from_user_id,
            FRIEND_ACCEPT,
            f"{await self._username(request.to_user_id)} accepted your friend request",
            from_user_id=request.to_user_id,
        )
        await self.db.commit()
        logger.info("friend.request.accepted", request_id=request.id, chat_id=chat.id if chat else None)
        return AcceptResult(request=request, chat=chat)

    async def reject_friend_request(self, request_id: str, user_id: str) -> FriendRequest:
        request = await self._respond(request_id, user_id, "rejected")
        await self.db.commit()
        logger.info("friend.request.rejected", request_id=request.id)
        return request

    async def remove_friend(self, user_id: str, friend_id: str) -> FriendRequest:
        """End a friendship: both follows go, the DM chat and its history stay"""
        stmt = select(FriendRequest).where(
            or_(
                and_(FriendRequest.from_user_id == user_id, FriendRequest.to_user_id == friend_id),
                and_(FriendRequest.from_user_id == friend_id, FriendRequest.to_user_id == user_id),
            ),
            FriendRequest.status == "accepted",
        )
        request = (await self.db.execute(stmt)).scalars().first()
        if request is None:
            raise NotFoundError("You are not friends with this user")
        request.status = "removed"
        request.responded_at = self.clock()
        await self._remove_follow(user_id, friend_id)
        await self._remove_follow(friend_id, user_id)
        await self.db.commit()
        logger.info("friend.removed", user_id=user_id, friend_id=friend_id)
        return request
