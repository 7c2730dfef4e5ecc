"""
Outbox Message Model - Transactional Outbox Pattern

Realtime pushes triggered by ledger transitions are written here inside the
same transaction and published later by the outbox worker.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON

from manpower.db.database import Base
from manpower.db.types import utcnow


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """Pending realtime events with retry tracking"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    channel = Column(String(100), nullable=False)  # Room, e.g. "user:42"
    event = Column(String(100), nullable=False)  # e.g. "notification:new"
    payload = Column(JSON, nullable=False)

    status = Column(
        SQLEnum(MessageStatus, name="outbox_status", values_callable=lambda x: [e.value for e in x]),
        default=MessageStatus.PENDING,
        index=True,
    )
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=3)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)
    processing_started_at = Column(DateTime, nullable=True)

    # Error tracking
    last_error = Column(String(1000), nullable=True)
