from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from app.api.dm.messages import DmMessageResponse, message_to_response
from app.core.deps import ConnectionManagerDep, CurrentUserIdDep, DmServiceDep
from app.core.time import to_iso
from app.models.dm import DmBlock

router = APIRouter(tags=["dm"])


class RequestSender(BaseModel):
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class PendingDmRequest(BaseModel):
    id: str
    sender: RequestSender
    first_message: str
    message_type: str
    file_url: Optional[str] = None
    created_at: Optional[str]


class PendingDmRequestsResponse(BaseModel):
    requests: List[PendingDmRequest]


class AllowResponse(BaseModel):
    request_id: str
    status: str
    chat_id: str
    message: DmMessageResponse


class BlockResponse(BaseModel):
    request_id: Optional[str] = None
    blocked_user_id: str
    block_type: str
    expires_at: Optional[str] = None


def block_to_response(block: DmBlock, request_id: Optional[str] = None) -> BlockResponse:
    return BlockResponse(
        request_id=request_id,
        blocked_user_id=block.blocked_id,
        block_type=block.block_type,
        expires_at=to_iso(block.expires_at),
    )


@router.get("/dm/requests", response_model=PendingDmRequestsResponse)
async def list_requests(user_id: CurrentUserIdDep, dm: DmServiceDep):
    rows = await dm.list_pending_requests(user_id)
    return PendingDmRequestsResponse(
        requests=[
            PendingDmRequest(
                id=request.id,
                sender=RequestSender(
                    id=sender.id,
                    username=sender.username,
                    display_name=sender.display_name,
                    avatar_url=sender.avatar_url,
                ),
                first_message=request.first_message,
                message_type=request.message_type,
                file_url=request.file_url,
                created_at=to_iso(request.created_at),
            )
            for request, sender in rows
        ]
    )


@router.post("/dm/requests/{request_id}/allow", response_model=AllowResponse)
async def allow_request(
    request_id: str,
    user_id: CurrentUserIdDep,
    dm: DmServiceDep,
    manager: ConnectionManagerDep,
):
    result = await dm.allow_request(request_id, user_id)
    data = message_to_response(result.message)
    await manager.broadcast({"type": "dm.message", "data": data.model_dump()}, result.chat.id)
    return AllowResponse(
        request_id=result.request.id,
        status=result.request.status,
        chat_id=result.chat.id,
        message=data,
    )


@router.post("/dm/requests/{request_id}/dismiss", response_model=BlockResponse)
async def dismiss_request(request_id: str, user_id: CurrentUserIdDep, dm: DmServiceDep):
    """Reject the request and mute the sender for the cooldown window."""
    block = await dm.dismiss_request(request_id, user_id)
    return block_to_response(block, request_id)


@router.post("/dm/requests/{request_id}/block", response_model=BlockResponse)
async def block_request(request_id: str, user_id: CurrentUserIdDep, dm: DmServiceDep):
    block = await dm.block_request(request_id, user_id)
    return block_to_response(block, request_id)
