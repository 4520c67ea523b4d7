from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from app.api.dm.messages import DmMessageResponse, message_to_response
from app.api.dm.requests import BlockResponse, block_to_response
from app.core.deps import CurrentUserIdDep, DmServiceDep
from app.core.time import to_iso
from app.services.dm import ChatSummary

router = APIRouter(tags=["dm"])


class ChatPeer(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class DmChatResponse(BaseModel):
    id: str
    other_user: ChatPeer
    last_message: Optional[DmMessageResponse] = None
    unread_count: int
    created_at: Optional[str]
    updated_at: Optional[str]


class DmChatsListResponse(BaseModel):
    chats: List[DmChatResponse]


class ChatStatusResponse(BaseModel):
    is_restricted: bool
    is_blocked: bool
    block_type: Optional[str] = None
    block_expires_at: Optional[str] = None
    was_dismissed: bool
    has_pending_request: bool
    pending_request_from: Optional[str] = None


class UnreadCountResponse(BaseModel):
    total: int
    chats_with_unread: int
    pending_requests: int


def summary_to_response(summary: ChatSummary) -> DmChatResponse:
    other = summary.other_user
    return DmChatResponse(
        id=summary.chat.id,
        other_user=ChatPeer(
            id=other.id,
            username=other.username,
            display_name=other.display_name,
            avatar_url=other.avatar_url,
        ),
        last_message=message_to_response(summary.last_message) if summary.last_message else None,
        unread_count=summary.unread_count,
        created_at=to_iso(summary.chat.created_at),
        updated_at=to_iso(summary.chat.updated_at),
    )


@router.get("/dm/chats", response_model=DmChatsListResponse)
async def list_chats(user_id: CurrentUserIdDep, dm: DmServiceDep):
    summaries = await dm.list_chats(user_id)
    return DmChatsListResponse(chats=[summary_to_response(s) for s in summaries])


@router.get("/dm/unread-count", response_model=UnreadCountResponse)
async def unread_count(user_id: CurrentUserIdDep, dm: DmServiceDep):
    summary = await dm.unread_summary(user_id)
    return UnreadCountResponse(
        total=summary.total,
        chats_with_unread=summary.chats_with_unread,
        pending_requests=summary.pending_requests,
    )


@router.get("/dm/chats/{chat_id}", response_model=DmChatResponse)
async def get_chat(chat_id: str, user_id: CurrentUserIdDep, dm: DmServiceDep):
    return summary_to_response(await dm.get_chat(chat_id, user_id))


@router.get("/dm/chats/{chat_id}/status", response_model=ChatStatusResponse)
async def chat_status(chat_id: str, user_id: CurrentUserIdDep, dm: DmServiceDep):
    """Live restriction state of a chat as seen by the caller."""
    s = await dm.chat_status(chat_id, user_id)
    return ChatStatusResponse(
        is_restricted=s.is_restricted,
        is_blocked=s.is_blocked,
        block_type=s.block_type,
        block_expires_at=to_iso(s.block_expires_at),
        was_dismissed=s.was_dismissed,
        has_pending_request=s.has_pending_request,
        pending_request_from=s.pending_request_from,
    )


@router.post("/dm/chats/{chat_id}/block", response_model=BlockResponse)
async def block_from_chat(chat_id: str, user_id: CurrentUserIdDep, dm: DmServiceDep):
    block = await dm.block_from_chat(chat_id, user_id)
    return block_to_response(block)
