from typing import List, Optional

from fastapi import APIRouter, File, Form, Query, UploadFile, status
from pydantic import BaseModel

from app.core.deps import (
    ConnectionManagerDep,
    CurrentUserIdDep,
    DmServiceDep,
    MediaStoreDep,
)
from app.core.errors import AppError
from app.core.logging import get_logger
from app.core.time import to_iso
from app.models.dm import DmMessage, DmRequest
from app.services.connection_manager import ConnectionManager
from app.services.dm import Attachment, Rejected, RequestCreated, SendResult, Sent, raise_for_rejection

router = APIRouter(tags=["dm"])
logger = get_logger(__name__)


# --- Schemas ---

class DmMessageResponse(BaseModel):
    id: str
    chat_id: str
    seq: int
    sender_id: str
    content: str
    message_type: str
    file_url: Optional[str] = None
    is_read: bool
    created_at: Optional[str]


class DmRequestResponse(BaseModel):
    id: str
    from_user_id: str
    to_user_id: str
    first_message: str
    message_type: str
    file_url: Optional[str] = None
    status: str
    created_at: Optional[str]


class SendDmMessagePayload(BaseModel):
    content: str


class SendDmMessageResponse(BaseModel):
    # result: sent | request_created
    result: str
    chat_id: Optional[str] = None
    message: Optional[DmMessageResponse] = None
    request: Optional[DmRequestResponse] = None


class DmMessagesListResponse(BaseModel):
    messages: List[DmMessageResponse]


class MarkReadResponse(BaseModel):
    marked: int


# --- Helpers ---

def message_to_response(message: DmMessage) -> DmMessageResponse:
    return DmMessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        seq=message.seq,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        file_url=message.file_url,
        is_read=message.is_read,
        created_at=to_iso(message.created_at),
    )


def request_to_response(request: DmRequest) -> DmRequestResponse:
    return DmRequestResponse(
        id=request.id,
        from_user_id=request.from_user_id,
        to_user_id=request.to_user_id,
        first_message=request.first_message,
        message_type=request.message_type,
        file_url=request.file_url,
        status=request.status,
        created_at=to_iso(request.created_at),
    )


async def _render_send_result(result: SendResult, manager: ConnectionManager) -> SendDmMessageResponse:
    if isinstance(result, Rejected):
        raise_for_rejection(result)

    if isinstance(result, RequestCreated):
        return SendDmMessageResponse(
            result="request_created",
            request=request_to_response(result.request),
        )

    # Sent
    data = message_to_response(result.message)
    await manager.broadcast({"type": "dm.message", "data": data.model_dump()}, result.chat.id)
    return SendDmMessageResponse(result="sent", chat_id=result.chat.id, message=data)


# --- Endpoints ---

@router.post(
    "/dm/{to_user_id}/messages",
    response_model=SendDmMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    to_user_id: str,
    payload: SendDmMessagePayload,
    user_id: CurrentUserIdDep,
    dm: DmServiceDep,
    manager: ConnectionManagerDep,
):
    """
    Send a DM. Delivered straight into the chat when one exists, otherwise
    held as a pending request until the recipient responds.
    """
    result = await dm.send_message(user_id, to_user_id, payload.content)
    return await _render_send_result(result, manager)


@router.post(
    "/dm/{to_user_id}/messages/upload",
    response_model=SendDmMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_media_message(
    to_user_id: str,
    user_id: CurrentUserIdDep,
    dm: DmServiceDep,
    media: MediaStoreDep,
    manager: ConnectionManagerDep,
    file: UploadFile = File(...),
    content: str = Form(""),
):
    """Upload first; rows are only written once the object store accepted the file."""
    data = await file.read()
    stored = await media.upload(data, file.filename or "upload", file.content_type)

    try:
        result = await dm.send_message(
            user_id,
            to_user_id,
            content,
            attachment=Attachment(url=stored.url, kind=stored.kind),
        )
    except AppError:
        await media.delete(stored.key)
        raise
    if isinstance(result, Rejected):
        await media.delete(stored.key)
    return await _render_send_result(result, manager)


@router.get("/dm/chats/{chat_id}/messages", response_model=DmMessagesListResponse)
async def get_messages(
    chat_id: str,
    user_id: CurrentUserIdDep,
    dm: DmServiceDep,
    limit: int = Query(50, ge=1, le=200),
    before_seq: Optional[int] = Query(None),
):
    messages = await dm.list_messages(chat_id, user_id, limit=limit, before=before_seq)
    return DmMessagesListResponse(messages=[message_to_response(m) for m in messages])


@router.post("/dm/chats/{chat_id}/read", response_model=MarkReadResponse)
async def mark_read(chat_id: str, user_id: CurrentUserIdDep, dm: DmServiceDep):
    marked = await dm.mark_read(chat_id, user_id)
    return MarkReadResponse(marked=marked)
