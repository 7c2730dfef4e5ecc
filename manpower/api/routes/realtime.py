"""
Realtime WebSocket endpoint

Connect with ``/ws?token=<jwt>``. Frames are JSON objects
``{"event": "<name>", "data": {...}}`` in both directions.

Client events: chat:join, chat:leave, chat:sendMessage, chat:typing, chat:markAsRead
Server events: chat:newMessage, chat:notification, chat:userTyping,
chat:messagesRead, chat:error, notification:new, wallet:updated
"""
import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from manpower.api.dependencies.auth import authenticate_token
from manpower.api.dependencies.services import get_hub
from manpower.api.routes.chat import broadcast_new_message
from manpower.core.exceptions import AppException
from manpower.core.logging import get_logger
from manpower.db.database import get_session_factory
from manpower.db.models.user import User
from manpower.domain.services.chat_service import ChatService
from manpower.domain.services.realtime import Connection, RealtimeHub, conversation_room, user_room

logger = get_logger(__name__)

router = APIRouter()

WS_UNAUTHORIZED = 4401


def _conversation_id(data: Any) -> int:
    try:
        return int(data["conversationId"])
    except (TypeError, KeyError, ValueError):
        raise ValueError("conversationId is required")


async def handle_client_event(
    hub: RealtimeHub,
    connection: Connection,
    user: User,
    db: AsyncSession,
    event: str,
    data: Any,
) -> None:
    """Dispatch one client frame; failures are reported back as chat:error"""
    chat = ChatService(db)
    try:
        if event == "chat:join":
            conversation_id = _conversation_id(data)
            await chat.get_participant_conversation(conversation_id, user.id)
            hub.join(connection, conversation_room(conversation_id))

        elif event == "chat:leave":
            hub.leave(connection, conversation_room(_conversation_id(data)))

        elif event == "chat:sendMessage":
            conversation_id = _conversation_id(data)
            message, recipient_id = await chat.send_message(
                conversation_id, user.id, (data or {}).get("content", "")
            )
            await broadcast_new_message(hub, message, recipient_id, user)

        elif event == "chat:typing":
            conversation_id = _conversation_id(data)
            await hub.emit(
                conversation_room(conversation_id),
                "chat:userTyping",
                {
                    "conversationId": conversation_id,
                    "userId": user.id,
                    "isTyping": bool((data or {}).get("isTyping", True)),
                },
                exclude=connection,
            )

        elif event == "chat:markAsRead":
            conversation_id = _conversation_id(data)
            await chat.mark_messages_as_read(conversation_id, user.id)
            await hub.emit(
                conversation_room(conversation_id),
                "chat:messagesRead",
                {"conversationId": conversation_id, "userId": user.id},
                exclude=connection,
            )

        else:
            raise ValueError(f"Unknown event: {event}")

    except (AppException, ValueError) as e:
        message = e.message if isinstance(e, AppException) else str(e)
        logger.info(
            "Realtime event rejected",
            extra_data={"user_id": user.id, "event": event, "error": message},
        )
        await connection.send_json({"event": "chat:error", "data": {"message": message}})


def _parse_frame(text: str) -> tuple[str, Any]:
    try:
        frame = json.loads(text)
    except ValueError:
        raise ValueError("Invalid frame")
    if not isinstance(frame, dict):
        raise ValueError("Invalid frame")
    return frame.get("event", ""), frame.get("data")


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(default=None),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    hub: RealtimeHub = Depends(get_hub),
):
    # Sessions are opened per handshake and per frame, never held for the socket's lifetime
    await websocket.accept()
    try:
        async with session_factory() as db:
            user = await authenticate_token(token, db)
    except AppException as e:
        await websocket.close(code=WS_UNAUTHORIZED, reason=e.message)
        return

    hub.join(websocket, user_room(user.id))
    logger.info("Realtime client connected", extra_data={"user_id": user.id})

    try:
        while True:
            text = await websocket.receive_text()
            try:
                event, data = _parse_frame(text)
            except ValueError as e:
                await websocket.send_json({"event": "chat:error", "data": {"message": str(e)}})
                continue
            async with session_factory() as db:
                await handle_client_event(hub, websocket, user, db, event, data)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
        logger.info("Realtime client disconnected", extra_data={"user_id": user.id})
