"""
Chat Models - two-party conversations and their messages
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Boolean, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from manpower.core.exceptions import ValidationException
from manpower.db.database import Base
from manpower.db.types import utcnow

MAX_MESSAGE_LENGTH = 2000


class Conversation(Base):
    """Conversation between exactly two users, optionally about a job"""

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=True)

    # Denormalized summary for the conversation list
    last_message_content = Column(String(MAX_MESSAGE_LENGTH), nullable=True)
    last_message_sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    last_message_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    participants = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def participant_ids(self) -> list[int]:
        return sorted(p.user_id for p in self.participants)


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_participant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="participants")


class Message(Base):
    """Chat message"""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_sender_read", "sender_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    @validates("content")
    def _validate_content(self, key, value):
        value = (value or "").strip()
        if not value:
            raise ValidationException("Message content is required", field="content")
        if len(value) > MAX_MESSAGE_LENGTH:
            raise ValidationException(
                f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters", field="content"
            )
        return value
