"""
Chat API Routes

Messages sent over REST are broadcast the same way as those sent over the
WebSocket: ``chat:newMessage`` to the conversation room and
``chat:notification`` to the recipient's personal room.
"""
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.api.dependencies.auth import get_current_user
from manpower.api.dependencies.services import get_hub
from manpower.api.routes.schemas import (
    ApiResponse,
    ConversationOut,
    CountOut,
    CreateConversationRequest,
    MessageOut,
    PaginationOut,
    SendMessageRequest,
)
from manpower.db.database import get_db
from manpower.db.models.chat import Message
from manpower.db.models.user import User
from manpower.domain.services.chat_service import ChatService, MESSAGE_PAGE_SIZE
from manpower.domain.services.realtime import RealtimeHub, conversation_room, user_room

router = APIRouter()


async def broadcast_new_message(hub: RealtimeHub, message: Message, recipient_id: int, sender: User) -> None:
    payload = MessageOut.model_validate(message).model_dump(mode="json", by_alias=True)
    await hub.emit(conversation_room(message.conversation_id), "chat:newMessage", payload)
    await hub.emit(
        user_room(recipient_id),
        "chat:notification",
        {
            "conversationId": message.conversation_id,
            "senderId": sender.id,
            "senderName": sender.name,
            "content": message.content,
        },
    )


@router.post(
    "/conversations",
    response_model=ApiResponse[ConversationOut],
    status_code=status.HTTP_201_CREATED,
    summary="Open (or reuse) a conversation with another user",
)
async def create_conversation(
    body: CreateConversationRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation, _ = await ChatService(db).create_or_get_conversation(
        [user.id, body.participant_id], job_id=body.job_id
    )
    return ApiResponse(data=ConversationOut.model_validate(conversation))


@router.get(
    "/conversations",
    response_model=ApiResponse[List[ConversationOut]],
    summary="Conversations of the caller, most recent first",
)
async def list_conversations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversations = await ChatService(db).get_user_conversations(user.id)
    return ApiResponse(data=[ConversationOut.model_validate(c) for c in conversations])


@router.get(
    "/unread-count",
    response_model=ApiResponse[CountOut],
    summary="Unread messages addressed to the caller",
)
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await ChatService(db).get_unread_count(user.id)
    return ApiResponse(data=CountOut(count=count))


@router.get(
    "/{conversation_id}",
    response_model=ApiResponse[List[MessageOut]],
    summary="Messages of a conversation (chronological page)",
)
async def get_messages(
    conversation_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=MESSAGE_PAGE_SIZE, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    messages, pagination = await ChatService(db).get_conversation_messages(
        conversation_id, user.id, page=page, limit=limit
    )
    return ApiResponse(
        data=[MessageOut.model_validate(m) for m in messages],
        pagination=PaginationOut(**pagination.to_dict()),
    )


@router.post(
    "/{conversation_id}/send",
    response_model=ApiResponse[MessageOut],
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: int,
    body: SendMessageRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    message, recipient_id = await ChatService(db).send_message(conversation_id, user.id, body.content)
    await broadcast_new_message(hub, message, recipient_id, user)
    return ApiResponse(data=MessageOut.model_validate(message))


@router.put(
    "/{conversation_id}/read",
    response_model=ApiResponse[CountOut],
    summary="Mark the other participant's messages as read",
)
async def mark_as_read(
    conversation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    count = await ChatService(db).mark_messages_as_read(conversation_id, user.id)
    await hub.emit(
        conversation_room(conversation_id),
        "chat:messagesRead",
        {"conversationId": conversation_id, "userId": user.id},
    )
    return ApiResponse(message="Messages marked as read", data=CountOut(count=count))
