from datetime import datetime
from typing import List, Optional

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.time import utcnow
from app.models.base import Base, new_id


def pending_key_for(from_user_id: str, to_user_id: str) -> str:
    return f"{from_user_id}:{to_user_id}"


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class DmRequest(Base):
    __tablename__ = "dm_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    first_message: Mapped[str] = mapped_column(Text, nullable=False)

    # message_type / file_url of the first message, replayed on allow
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    file_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # status: pending | accepted | rejected
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")

    # "<from>:<to>" while pending, NULL once resolved
    pending_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("from_user_id <> to_user_id", name="chk_dm_requests_not_self"),
        Index("idx_dm_requests_to_status", "to_user_id", "status"),
        Index("idx_dm_requests_from_status", "from_user_id", "status"),
    )


class DmChat(Base):
    __tablename__ = "dm_chats"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    user1_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user2_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    user1_last_read: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    user2_last_read: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("user1_id < user2_id", name="chk_dm_chats_canonical"),
        UniqueConstraint("user1_id", "user2_id", name="uq_dm_chats_pair"),
        Index("idx_dm_chats_user2", "user2_id"),
    )

    messages: Mapped[List["DmMessage"]] = relationship(
        "DmMessage", back_populates="chat", cascade="all, delete-orphan"
    )

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def other_participant(self, user_id: str) -> str:
        return self.user2_id if user_id == self.user1_id else self.user1_id


class DmMessage(Base):
    __tablename__ = "dm_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    chat_id: Mapped[str] = mapped_column(ForeignKey("dm_chats.id", ondelete="CASCADE"), nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sender_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # message_type: text | image | video | file
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    file_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("chat_id", "seq", name="uq_dm_messages_chat_seq"),
        Index("idx_dm_messages_chat_created", "chat_id", "created_at"),
        Index("idx_dm_messages_sender", "sender_id"),
    )

    chat: Mapped["DmChat"] = relationship("DmChat", back_populates="messages")


class DmBlock(Base):
    __tablename__ = "dm_blocks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    blocker_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    blocked_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # block_type: permanent | temporary
    block_type: Mapped[str] = mapped_column(String(16), nullable=False)

    # NULL for permanent blocks
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("blocker_id <> blocked_id", name="chk_dm_blocks_not_self"),
        UniqueConstraint("blocker_id", "blocked_id", name="uq_dm_blocks_pair"),
        Index("idx_dm_blocks_expires", "block_type", "expires_at"),
    )

    def is_active(self, now: datetime) -> bool:
        if self.block_type == "permanent":
            return True
        return self.expires_at is not None and self.expires_at > now
