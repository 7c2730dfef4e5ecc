"""
Chat Service - conversations and messages between two users
"""
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.core.exceptions import (
    ConversationNotFoundError,
    ForbiddenError,
    UserNotFoundError,
    ValidationException,
)
from manpower.core.logging import get_logger
from manpower.db.models.chat import Conversation, ConversationParticipant, Message
from manpower.db.models.user import User
from manpower.db.types import utcnow
from manpower.domain.pagination import Pagination, build_pagination, normalize_page, offset_for

logger = get_logger(__name__)

MESSAGE_PAGE_SIZE = 50


class ChatService:
    """Persistence side of chat; broadcasting is done by the caller"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_or_get_conversation(
        self,
        participant_ids: list[int],
        job_id: Optional[int] = None,
    ) -> tuple[Conversation, bool]:
        """Returns (conversation, created)"""
        unique_ids = sorted(set(participant_ids))
        if len(participant_ids) != 2 or len(unique_ids) != 2:
            raise ValidationException(
                "Conversation must have exactly 2 participants", field="participants"
            )

        result = await self.db.execute(select(User.id).where(User.id.in_(unique_ids)))
        found = set(result.scalars().all())
        missing = [user_id for user_id in unique_ids if user_id not in found]
        if missing:
            raise UserNotFoundError(missing[0])

        existing = await self._find_between(unique_ids)
        if existing:
            return existing, False

        conversation = Conversation(
            job_id=job_id,
            participants=[ConversationParticipant(user_id=user_id) for user_id in unique_ids],
        )
        self.db.add(conversation)
        await self.db.commit()

        logger.info(
            "Conversation created",
            extra_data={"conversation_id": conversation.id, "participants": unique_ids, "job_id": job_id},
        )
        return conversation, True

    async def _find_between(self, user_ids: list[int]) -> Optional[Conversation]:
        shared = (
            select(ConversationParticipant.conversation_id)
            .where(ConversationParticipant.user_id.in_(user_ids))
            .group_by(ConversationParticipant.conversation_id)
            .having(func.count(func.distinct(ConversationParticipant.user_id)) == len(user_ids))
        )
        result = await self.db.execute(
            select(Conversation).where(Conversation.id.in_(shared)).order_by(Conversation.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_conversation(self, conversation_id: int) -> Conversation:
        result = await self.db.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        conversation = result.scalar_one_or_none()
        if not conversation:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def get_participant_conversation(self, conversation_id: int, user_id: int) -> Conversation:
        """Conversation, provided ``user_id`` takes part in it"""
        conversation = await self.get_conversation(conversation_id)
        if user_id not in conversation.participant_ids:
            raise ForbiddenError("You are not part of this conversation")
        return conversation

    async def get_user_conversations(self, user_id: int) -> list[Conversation]:
        mine = select(ConversationParticipant.conversation_id).where(
            ConversationParticipant.user_id == user_id
        )
        result = await self.db.execute(
            select(Conversation)
            .where(Conversation.id.in_(mine))
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        )
        return list(result.scalars().all())

    async def send_message(
        self,
        conversation_id: int,
        sender_id: int,
        content: str,
    ) -> tuple[Message, int]:
        """Returns (message, recipient_id)"""
        conversation = await self.get_participant_conversation(conversation_id, sender_id)

        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=content,
            is_read=False,
        )
        self.db.add(message)

        now = utcnow()
        message.created_at = now
        conversation.last_message_content = message.content
        conversation.last_message_sender_id = sender_id
        conversation.last_message_at = now
        conversation.updated_at = now

        await self.db.commit()

        recipient_id = next(uid for uid in conversation.participant_ids if uid != sender_id)
        logger.info(
            "Message sent",
            extra_data={
                "conversation_id": conversation.id,
                "message_id": message.id,
                "sender_id": sender_id,
                "recipient_id": recipient_id,
            },
        )
        return message, recipient_id

    async def get_conversation_messages(
        self,
        conversation_id: int,
        user_id: int,
        page: int = 1,
        limit: int = MESSAGE_PAGE_SIZE,
    ) -> tuple[list[Message], Pagination]:
        """One page, fetched newest first, returned in chronological order"""
        await self.get_participant_conversation(conversation_id, user_id)
        page, limit = normalize_page(page, limit, MESSAGE_PAGE_SIZE)

        total = await self.db.scalar(
            select(func.count()).select_from(Message).where(Message.conversation_id == conversation_id)
        )
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset_for(page, limit))
            .limit(limit)
        )
        messages = list(result.scalars().all())
        messages.reverse()
        return messages, build_pagination(page, limit, total or 0)

    async def mark_messages_as_read(self, conversation_id: int, user_id: int) -> int:
        """Mark the other side's unread messages as read; returns how many changed"""
        await self.get_participant_conversation(conversation_id, user_id)
        result = await self.db.execute(
            select(Message).where(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
        )
        unread = list(result.scalars().all())
        now = utcnow()
        for message in unread:
            message.is_read = True
            message.read_at = now
        await self.db.commit()
        return len(unread)

    async def get_unread_count(self, user_id: int) -> int:
        mine = select(ConversationParticipant.conversation_id).where(
            ConversationParticipant.user_id == user_id
        )
        count = await self.db.scalar(
            select(func.count())
            .select_from(Message)
            .where(
                Message.conversation_id.in_(mine),
                Message.sender_id != user_id,
                Message.is_read.is_(False),
            )
        )
        return count or 0
