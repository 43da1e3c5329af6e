"""
WebSocket endpoint for real-time chat.

One connection per client session, multiplexing any number of chatrooms:

    ws://localhost:8001/api/chat/ws?token=ACCESS_TOKEN

Client -> Server frames (see chathub.schemas.events):
    ping, join, leave, typing, send_personal, send_group, send_reply,
    forward, status_update, edit, delete
Server -> Client:
    ack / error for every frame, plus the events of joined chatrooms:
    new_message, message_updated, message_deleted, status_update,
    user_joined, user_left, user_typing

Errors never close the connection; they come back as error frames.
"""

from typing import Any

import jwt
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from chathub.core.logging_config import get_logger
from chathub.core.security import decode_token_string
from chathub.dependencies import get_container
from chathub.schemas.chatroom import project_chatroom
from chathub.schemas.events import ack_frame, error_frame, inbound_frame_adapter
from chathub.services.chat_service import ChatService
from chathub.services.presence_hub import Connection

router = APIRouter()
logger = get_logger(__name__)


def _dump(model) -> Any:
    return model.model_dump(by_alias=True, mode="json")


async def dispatch_frame(chat_service: ChatService, conn: Connection, frame) -> Any:
    """Run one validated client frame and return the ack payload."""
    user_id = conn.user_id

    if frame.type == "ping":
        return {"pong": True}

    if frame.type == "join":
        room = await chat_service.join(conn, frame.chatroom_id)
        return _dump(project_chatroom(room))

    if frame.type == "leave":
        return {"left": await chat_service.leave(conn, frame.chatroom_id)}

    if frame.type == "typing":
        return {"delivered": await chat_service.typing(conn, frame.chatroom_id, frame.is_typing)}

    if frame.type == "send_personal":
        view = await chat_service.send_personal(user_id, frame.receiver_id, frame.content, frame.attachment_id)
        return _dump(view)

    if frame.type == "send_group":
        view = await chat_service.send_group(user_id, frame.group_id, frame.content, frame.attachment_id)
        return _dump(view)

    if frame.type == "send_reply":
        view = await chat_service.send_reply(user_id, frame.replied_to_id, frame.content, frame.attachment_id)
        return _dump(view)

    if frame.type == "forward":
        view = await chat_service.forward(user_id, frame.message_id, frame.destination_chatroom_id)
        return _dump(view)

    if frame.type == "status_update":
        return _dump(await chat_service.update_status(user_id, frame.message_id, frame.status))

    if frame.type == "edit":
        return _dump(await chat_service.edit_message(user_id, frame.message_id, frame.content))

    if frame.type == "delete":
        await chat_service.delete_message(user_id, frame.message_id)
        return None

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported frame type {frame.type}")


async def handle_frame(chat_service: ChatService, conn: Connection, raw: str) -> None:
    hub = chat_service.hub

    try:
        frame = inbound_frame_adapter.validate_json(raw)
    except ValidationError as e:
        logger.debug("websocket_frame_invalid", connection_id=conn.id, errors=e.error_count())
        hub.send_personal(conn, error_frame(
            None,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        ))
        return

    try:
        data = await dispatch_frame(chat_service, conn, frame)
    except HTTPException as e:
        logger.info(
            "websocket_frame_rejected",
            connection_id=conn.id,
            user_id=conn.user_id,
            frame_type=frame.type,
            status_code=e.status_code,
            detail=e.detail,
        )
        hub.send_personal(conn, error_frame(frame.request_id, e.status_code, e.detail))
        return
    except Exception as e:
        logger.error(
            "websocket_frame_failed",
            connection_id=conn.id,
            user_id=conn.user_id,
            frame_type=frame.type,
            error_type=type(e).__name__,
            error=str(e),
            exc_info=True,
        )
        hub.send_personal(conn, error_frame(
            frame.request_id, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error"
        ))
        return

    hub.send_personal(conn, ack_frame(frame.request_id, data))


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(..., description="JWT access token")
):
    """
    Authenticate with the token query parameter, then serve frames until the
    client goes away.
    """
    try:
        user = decode_token_string(token)
    except jwt.InvalidTokenError as e:
        logger.warning("websocket_authentication_failed", error=str(e))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    container = get_container()
    chat_service = container.chat_service
    hub = container.hub

    conn = await hub.register(websocket, user.user_id)
    hub.send_personal(conn, {"type": "connected", "userId": user.user_id, "connectionId": conn.id})
    logger.info("websocket_connected", user_id=user.user_id, connection_id=conn.id)

    reason = "normal"
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_frame(chat_service, conn, raw)

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", user_id=user.user_id, connection_id=conn.id)

    except Exception as e:
        reason = "error"
        logger.error(
            "websocket_error",
            error_type=type(e).__name__,
            error=str(e),
            user_id=user.user_id,
            connection_id=conn.id,
            exc_info=True
        )
        try:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except RuntimeError:
            logger.debug("websocket_already_closed", connection_id=conn.id)

    finally:
        chat_service.disconnect(conn, reason=reason)
