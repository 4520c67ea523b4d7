"""
Direct message relationship state machine.

For a pair (A, B) where B writes to A first, the relationship moves through:

    none -> pending_request          B sends; the text waits in a DmRequest
    pending_request -> allowed       A allows; a DmChat opens with B's text first
    pending_request -> temporarily_blocked   A dismisses; B is muted for the cooldown
    pending_request -> permanently_blocked   A blocks
    allowed -> permanently_blocked   either side blocks from the chat
    temporarily_blocked -> pending_request   cooldown elapsed and B sends again
    temporarily_blocked -> allowed           B replies to a pending request from A

Nothing caches eligibility: every send resolves the state again from the
database and the injected clock. Expired temporary blocks are ignored at read
time; ``purge_expired_blocks`` only removes the dead rows.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    BlockedError,
    NotFoundError,
    RateLimitedError,
    StateConflictError,
    ValidationError,
)
from app.core.logging import get_logger
from app.core.time import Clock, utcnow
from app.models.dm import DmBlock, DmChat, DmMessage, DmRequest, canonical_pair, pending_key_for
from app.models.user import User

logger = get_logger(__name__)

REQUEST_PENDING = "request_pending"
BLOCKED_TEMPORARY = "blocked_temporary"
BLOCKED_PERMANENT = "blocked_permanent"


class RelationshipState(str, Enum):
    NONE = "none"
    PENDING_REQUEST = "pending_request"
    ALLOWED = "allowed"
    TEMPORARILY_BLOCKED = "temporarily_blocked"
    PERMANENTLY_BLOCKED = "permanently_blocked"


@dataclass(frozen=True)
class Attachment:
    """Media that was already uploaded; only its URL is stored"""

    url: str
    kind: str = "file"


@dataclass
class Sent:
    chat: DmChat
    message: DmMessage
    accepted_request: Optional[DmRequest] = None


@dataclass
class RequestCreated:
    request: DmRequest


@dataclass
class Rejected:
    reason: str
    expires_at: Optional[datetime] = None


SendResult = Union[Sent, RequestCreated, Rejected]


@dataclass
class AllowResult:
    request: DmRequest
    chat: DmChat
    message: DmMessage


@dataclass
class ChatStatus:
    is_restricted: bool
    is_blocked: bool
    block_type: Optional[str]
    block_expires_at: Optional[datetime]
    was_dismissed: bool
    has_pending_request: bool
    pending_request_from: Optional[str]


@dataclass
class ChatSummary:
    chat: DmChat
    other_user: User
    last_message: Optional[DmMessage]
    unread_count: int


@dataclass
class UnreadSummary:
    total: int
    chats_with_unread: int
    pending_requests: int


def raise_for_rejection(result: Rejected) -> None:
    """Translate a Rejected send into the matching AppError"""
    if result.reason == REQUEST_PENDING:
        raise RateLimitedError()
    if result.reason == BLOCKED_PERMANENT:
        raise BlockedError("permanent")
    details = {"expires_at": result.expires_at.isoformat()} if result.expires_at else None
    raise BlockedError("temporary", details=details)


class DmService:
    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utcnow,
        dismiss_cooldown: int = settings.dm_dismiss_cooldown_seconds,
    ):
        self.db = db
        self.clock = clock
        self.dismiss_cooldown = timedelta(seconds=dismiss_cooldown)

    # ---------- lookups ----------

    async def _blocks_between(self, user_a: str, user_b: str) -> List[DmBlock]:
        stmt = select(DmBlock).where(
            or_(
                and_(DmBlock.blocker_id == user_a, DmBlock.blocked_id == user_b),
                and_(DmBlock.blocker_id == user_b, DmBlock.blocked_id == user_a),
            )
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def _find_chat(self, user_a: str, user_b: str) -> Optional[DmChat]:
        user1, user2 = canonical_pair(user_a, user_b)
        stmt = select(DmChat).where(DmChat.user1_id == user1, DmChat.user2_id == user2)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _pending_request(self, from_user_id: str, to_user_id: str) -> Optional[DmRequest]:
        stmt = select(DmRequest).where(DmRequest.pending_key == pending_key_for(from_user_id, to_user_id))
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def _participant_chat(self, chat_id: str, user_id: str) -> DmChat:
        chat = await self.db.get(DmChat, chat_id)
        if chat is None or not chat.has_participant(user_id):
            raise NotFoundError("Chat not found")
        return chat

    async def _recipient_request(self, request_id: str, user_id: str) -> DmRequest:
        request = await self.db.get(DmRequest, request_id)
        if request is None or request.to_user_id != user_id:
            raise NotFoundError("Request not found")
        return request

    # ---------- writes ----------

    async def _resolve_request(self, request: DmRequest, status: str, now: datetime) -> None:
        """Guarded pending -> status transition; losing a race raises StateConflictError"""
        result = await self.db.execute(
            update(DmRequest)
            .where(DmRequest.id == request.id, DmRequest.status == "pending")
            .values(status=status, pending_key=None, updated_at=now)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise StateConflictError(
                "Request is no longer pending",
                details={"request_id": request.id},
            )

    async def _upsert_block(
        self,
        blocker_id: str,
        blocked_id: str,
        block_type: str,
        expires_at: Optional[datetime],
        now: datetime,
    ) -> DmBlock:
        stmt = select(DmBlock).where(DmBlock.blocker_id == blocker_id, DmBlock.blocked_id == blocked_id)
        block = (await self.db.execute(stmt)).scalar_one_or_none()
        if block is None:
            block = DmBlock(
                blocker_id=blocker_id,
                blocked_id=blocked_id,
                block_type=block_type,
                expires_at=expires_at,
                created_at=now,
            )
            self.db.add(block)
        elif block.block_type == "permanent" and block_type == "temporary":
            # a dismiss never downgrades a permanent block
            return block
        else:
            block.block_type = block_type
            block.expires_at = expires_at
            block.created_at = now
        await self.db.flush()
        return block

    async def _clear_temporary_blocks(self, user_a: str, user_b: str) -> None:
        await self.db.execute(
            delete(DmBlock).where(
                DmBlock.block_type == "temporary",
                or_(
                    and_(DmBlock.blocker_id == user_a, DmBlock.blocked_id == user_b),
                    and_(DmBlock.blocker_id == user_b, DmBlock.blocked_id == user_a),
                ),
            )
        )

    async def _get_or_create_chat(self, user_a: str, user_b: str, now: datetime) -> DmChat:
        chat = await self._find_chat(user_a, user_b)
        if chat is not None:
            return chat
        user1, user2 = canonical_pair(user_a, user_b)
        chat = DmChat(user1_id=user1, user2_id=user2, created_at=now, updated_at=now)
        self.db.add(chat)
        await self.db.flush()
        logger.info("dm.chat.opened", chat_id=chat.id, user1_id=user1, user2_id=user2)
        return chat

    async def _append_message(
        self,
        chat: DmChat,
        sender_id: str,
        content: str,
        now: datetime,
        message_type: str = "text",
        file_url: Optional[str] = None,
    ) -> DmMessage:
        next_seq = (
            await self.db.execute(
                select(func.coalesce(func.max(DmMessage.seq), 0)).where(DmMessage.chat_id == chat.id)
            )
        ).scalar_one() + 1
        message = DmMessage(
            chat_id=chat.id,
            seq=next_seq,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            file_url=file_url,
            is_read=False,
            created_at=now,
        )
        self.db.add(message)
        chat.updated_at = now
        await self.db.flush()
        return message

    async def _open_chat_with_request(self, request: DmRequest, now: datetime) -> AllowResult:
        """Shared tail of explicit and implicit allow: chat plus replayed first message"""
        await self._clear_temporary_blocks(request.from_user_id, request.to_user_id)
        chat = await self._get_or_create_chat(request.from_user_id, request.to_user_id, now)
        message = await self._append_message(
            chat,
            request.from_user_id,
            request.first_message,
            now,
            message_type=request.message_type,
            file_url=request.file_url,
        )
        return AllowResult(request=request, chat=chat, message=message)

    # ---------- operations ----------

    async def send_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        attachment: Optional[Attachment] = None,
    ) -> SendResult:
        if sender_id == recipient_id:
            raise ValidationError("You cannot message yourself")
        content = (content or "").strip()
        if not content and attachment is None:
            raise ValidationError("Message is required")

        recipient = await self.db.get(User, recipient_id)
        if recipient is None:
            raise NotFoundError("User not found")

        try:
            return await self._deliver(sender_id, recipient_id, content, attachment)
        except StateConflictError:
            # the incoming request was resolved by another session; the rollback
            # left the state committed by that session, so resolve it once more
            logger.info("dm.send.retry", sender_id=sender_id, recipient_id=recipient_id)
            return await self._deliver(sender_id, recipient_id, content, attachment)

    async def _deliver(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        attachment: Optional[Attachment],
    ) -> SendResult:
        now = self.clock()
        message_type = attachment.kind if attachment else "text"
        file_url = attachment.url if attachment else None

        blocks = await self._blocks_between(sender_id, recipient_id)
        if any(block.block_type == "permanent" for block in blocks):
            return Rejected(BLOCKED_PERMANENT)

        # a reply to the recipient's own pending request is never muted by
        # the recipient's dismiss; the implicit allow below clears the block
        incoming = await self._pending_request(recipient_id, sender_id)
        if incoming is None:
            for block in blocks:
                if block.blocker_id == recipient_id and block.is_active(now):
                    return Rejected(BLOCKED_TEMPORARY, expires_at=block.expires_at)

        chat = await self._find_chat(sender_id, recipient_id)
        if chat is not None:
            message = await self._append_message(chat, sender_id, content, now, message_type, file_url)
            await self.db.commit()
            logger.info("dm.message.sent", chat_id=chat.id, sender_id=sender_id, message_id=message.id)
            return Sent(chat=chat, message=message)

        if await self._pending_request(sender_id, recipient_id) is not None:
            return Rejected(REQUEST_PENDING)

        if incoming is not None:
            # replying to someone's pending request accepts it
            await self._resolve_request(incoming, "accepted", now)
            opened = await self._open_chat_with_request(incoming, now)
            message = await self._append_message(opened.chat, sender_id, content, now, message_type, file_url)
            await self.db.commit()
            logger.info(
                "dm.request.allowed",
                request_id=incoming.id,
                chat_id=opened.chat.id,
                implicit=True,
            )
            return Sent(chat=opened.chat, message=message, accepted_request=incoming)

        request = DmRequest(
            from_user_id=sender_id,
            to_user_id=recipient_id,
            first_message=content,
            message_type=message_type,
            file_url=file_url,
            status="pending",
            pending_key=pending_key_for(sender_id, recipient_id),
            created_at=now,
            updated_at=now,
        )
        self.db.add(request)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("dm.request.duplicate", from_user_id=sender_id, to_user_id=recipient_id)
            return Rejected(REQUEST_PENDING)

        logger.info("dm.request.created", request_id=request.id, from_user_id=sender_id, to_user_id=recipient_id)
        return RequestCreated(request=request)

    async def allow_request(self, request_id: str, user_id: str) -> AllowResult:
        request = await self._recipient_request(request_id, user_id)
        now = self.clock()
        await self._resolve_request(request, "accepted", now)
        result = await self._open_chat_with_request(request, now)
        await self.db.commit()
        logger.info("dm.request.allowed", request_id=request.id, chat_id=result.chat.id)
        return result

    async def dismiss_request(self, request_id: str, user_id: str) -> DmBlock:
        request = await self._recipient_request(request_id, user_id)
        now = self.clock()
        await self._resolve_request(request, "rejected", now)
        block = await self._upsert_block(
            user_id, request.from_user_id, "temporary", now + self.dismiss_cooldown, now
        )
        await self.db.commit()
        logger.info(
            "dm.request.dismissed",
            request_id=request.id,
            blocked_id=request.from_user_id,
            expires_at=block.expires_at.isoformat() if block.expires_at else None,
        )
        return block

    async def block_request(self, request_id: str, user_id: str) -> DmBlock:
        request = await self._recipient_request(request_id, user_id)
        now = self.clock()
        await self._resolve_request(request, "rejected", now)
        block = await self._upsert_block(user_id, request.from_user_id, "permanent", None, now)
        await self.db.commit()
        logger.info("dm.request.blocked", request_id=request.id, blocked_id=request.from_user_id)
        return block

    async def block_from_chat(self, chat_id: str, user_id: str) -> DmBlock:
        chat = await self._participant_chat(chat_id, user_id)
        other_id = chat.other_participant(user_id)
        now = self.clock()
        block = await self._upsert_block(user_id, other_id, "permanent", None, now)
        await self.db.execute(
            update(DmRequest)
            .where(
                DmRequest.pending_key.in_(
                    [pending_key_for(user_id, other_id), pending_key_for(other_id, user_id)]
                )
            )
            .values(status="rejected", pending_key=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("dm.chat.blocked", chat_id=chat.id, blocker_id=user_id, blocked_id=other_id)
        return block

    async def open_chat(self, user_a: str, user_b: str) -> Optional[DmChat]:
        """Open (or reuse) a chat without a request, e.g. for accepted friends.

        Pending DM requests between the pair are accepted on the way and
        their first messages land in the chat, oldest first. Returns None
        while a permanent block stands between the two users.
        """
        now = self.clock()
        blocks = await self._blocks_between(user_a, user_b)
        if any(block.block_type == "permanent" for block in blocks):
            logger.info("dm.chat.open_refused", user_a=user_a, user_b=user_b, reason=BLOCKED_PERMANENT)
            return None

        pending = [
            request
            for request in (
                await self._pending_request(user_a, user_b),
                await self._pending_request(user_b, user_a),
            )
            if request is not None
        ]
        pending.sort(key=lambda request: request.created_at)
        for request in pending:
            await self._resolve_request(request, "accepted", now)
            opened = await self._open_chat_with_request(request, now)
            logger.info("dm.request.allowed", request_id=request.id, chat_id=opened.chat.id, implicit=True)

        await self._clear_temporary_blocks(user_a, user_b)
        chat = await self._get_or_create_chat(user_a, user_b, now)
        await self.db.flush()
        return chat

    async def resolve_state(self, user_a: str, user_b: str) -> RelationshipState:
        now = self.clock()
        blocks = await self._blocks_between(user_a, user_b)
        if any(b.block_type == "permanent" for b in blocks):
            return RelationshipState.PERMANENTLY_BLOCKED
        if any(b.is_active(now) for b in blocks):
            return RelationshipState.TEMPORARILY_BLOCKED
        if await self._find_chat(user_a, user_b) is not None:
            return RelationshipState.ALLOWED
        if (
            await self._pending_request(user_a, user_b) is not None
            or await self._pending_request(user_b, user_a) is not None
        ):
            return RelationshipState.PENDING_REQUEST
        return RelationshipState.NONE

    async def chat_status(self, chat_id: str, user_id: str) -> ChatStatus:
        chat = await self._participant_chat(chat_id, user_id)
        other_id = chat.other_participant(user_id)
        now = self.clock()

        permanent: Optional[DmBlock] = None
        dismissed: Optional[DmBlock] = None
        for block in await self._blocks_between(user_id, other_id):
            if block.block_type == "permanent":
                permanent = block
            elif block.blocker_id == other_id and block.is_active(now):
                dismissed = block

        active = permanent or dismissed
        mine = await self._pending_request(user_id, other_id)
        theirs = await self._pending_request(other_id, user_id)
        pending = mine or theirs

        return ChatStatus(
            is_restricted=active is not None or mine is not None,
            is_blocked=active is not None,
            block_type=active.block_type if active else None,
            block_expires_at=active.expires_at if active else None,
            was_dismissed=dismissed is not None,
            has_pending_request=pending is not None,
            pending_request_from=pending.from_user_id if pending else None,
        )

    async def list_pending_requests(self, user_id: str) -> List[tuple[DmRequest, User]]:
        stmt = (
            select(DmRequest, User)
            .join(User, User.id == DmRequest.from_user_id)
            .where(DmRequest.to_user_id == user_id, DmRequest.status == "pending")
            .order_by(DmRequest.created_at.desc())
        )
        return [(row[0], row[1]) for row in (await self.db.execute(stmt)).all()]

    async def _unread_count(self, chat_id: str, user_id: str) -> int:
        stmt = select(func.count(DmMessage.id)).where(
            DmMessage.chat_id == chat_id,
            DmMessage.sender_id != user_id,
            DmMessage.is_read.is_(False),
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def _summarize(self, chat: DmChat, user_id: str) -> ChatSummary:
        other = await self.db.get(User, chat.other_participant(user_id))
        last = (
            await self.db.execute(
                select(DmMessage)
                .where(DmMessage.chat_id == chat.id)
                .order_by(DmMessage.seq.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        return ChatSummary(
            chat=chat,
            other_user=other,
            last_message=last,
            unread_count=await self._unread_count(chat.id, user_id),
        )

    async def list_chats(self, user_id: str) -> List[ChatSummary]:
        stmt = (
            select(DmChat)
            .where(or_(DmChat.user1_id == user_id, DmChat.user2_id == user_id))
            .order_by(DmChat.updated_at.desc())
        )
        chats = (await self.db.execute(stmt)).scalars().all()
        return [await self._summarize(chat, user_id) for chat in chats]

    async def get_chat(self, chat_id: str, user_id: str) -> ChatSummary:
        chat = await self._participant_chat(chat_id, user_id)
        return await self._summarize(chat, user_id)

    async def list_messages(
        self,
        chat_id: str,
        user_id: str,
        limit: int = settings.dm_messages_page_size,
        before: Optional[int] = None,
    ) -> List[DmMessage]:
        """Messages oldest first; ``before`` pages backwards by seq"""
        await self._participant_chat(chat_id, user_id)
        stmt = select(DmMessage).where(DmMessage.chat_id == chat_id)
        if before is not None:
            stmt = stmt.where(DmMessage.seq < before)
        stmt = stmt.order_by(DmMessage.seq.desc()).limit(limit)
        messages = list((await self.db.execute(stmt)).scalars().all())
        messages.reverse()
        return messages

    async def mark_read(self, chat_id: str, user_id: str) -> int:
        chat = await self._participant_chat(chat_id, user_id)
        now = self.clock()
        result = await self.db.execute(
            update(DmMessage)
            .where(
                DmMessage.chat_id == chat.id,
                DmMessage.sender_id != user_id,
                DmMessage.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        if chat.user1_id == user_id:
            chat.user1_last_read = now
        else:
            chat.user2_last_read = now
        await self.db.commit()
        return result.rowcount

    async def unread_summary(self, user_id: str) -> UnreadSummary:
        stmt = (
            select(DmMessage.chat_id, func.count(DmMessage.id))
            .join(DmChat, DmChat.id == DmMessage.chat_id)
            .where(
                or_(DmChat.user1_id == user_id, DmChat.user2_id == user_id),
                DmMessage.sender_id != user_id,
                DmMessage.is_read.is_(False),
            )
            .group_by(DmMessage.chat_id)
        )
        per_chat = (await self.db.execute(stmt)).all()
        pending = (
            await self.db.execute(
                select(func.count(DmRequest.id)).where(
                    DmRequest.to_user_id == user_id, DmRequest.status == "pending"
                )
            )
        ).scalar_one()
        return UnreadSummary(
            total=sum(count for _, count in per_chat),
            chats_with_unread=len(per_chat),
            pending_requests=pending,
        )

    async def purge_expired_blocks(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        result = await self.db.execute(
            delete(DmBlock).where(DmBlock.block_type == "temporary", DmBlock.expires_at <= now)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("dm.blocks.purged", count=result.rowcount)
        return result.rowcount
