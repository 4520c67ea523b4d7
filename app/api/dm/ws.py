from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.core.deps import SessionDep
from app.core.errors import AppError
from app.core.logging import get_logger
from app.core.token import authenticate_token
from app.models.dm import DmChat
from app.services.connection_manager import ConnectionManager

router = APIRouter(tags=["dm-ws"])
logger = get_logger(__name__)


@router.websocket("/dm/ws/{chat_id}")
async def dm_websocket(
    websocket: WebSocket,
    chat_id: str,
    db: SessionDep,
    token: Optional[str] = Query(None),
):
    """Receive-only channel for new messages in one chat; sending goes through REST."""
    if not token:
        await websocket.close(code=4003)
        return

    try:
        user, _ = await authenticate_token(token, websocket.app.state.session_store, db)
    except AppError as e:
        logger.info("dm.ws.rejected", chat_id=chat_id, reason=e.code)
        await websocket.close(code=4003)
        return

    chat = await db.get(DmChat, chat_id)
    if chat is None or not chat.has_participant(user.id):
        logger.info("dm.ws.rejected", chat_id=chat_id, reason="not_participant")
        await websocket.close(code=4003)
        return

    manager: ConnectionManager = websocket.app.state.connection_manager
    await manager.connect(websocket, chat_id)
    logger.info("dm.ws.connected", chat_id=chat_id, user_id=user.id)

    try:
        await manager.send_personal_message(
            {"type": "chat_connected", "data": {"chat_id": chat_id, "user_id": user.id}},
            websocket,
        )
        while True:
            # keep-alive; client frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("dm.ws.disconnected", chat_id=chat_id, user_id=user.id)
    finally:
        manager.disconnect(websocket, chat_id)
