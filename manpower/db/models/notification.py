"""
Notification Model - in-app notifications per user
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Boolean, Index

from manpower.db.database import Base
from manpower.db.types import utcnow


class NotificationType(str, enum.Enum):
    JOB_POST = "job_post"
    APPLICATION = "application"
    PAYMENT = "payment"
    CHAT = "chat"
    RATING = "rating"
    VERIFICATION = "verification"
    SYSTEM = "system"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(
        SQLEnum(NotificationType, name="notification_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)

    # Loose pointer to the entity this is about (payment, withdrawal, message...)
    related_id = Column(Integer, nullable=True)
    related_model = Column(String(50), nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    action_url = Column(String(500), nullable=True)
    priority = Column(
        SQLEnum(NotificationPriority, name="notification_priority", values_callable=lambda x: [e.value for e in x]),
        default=NotificationPriority.MEDIUM,
        nullable=False,
    )

    created_at = Column(DateTime, default=utcnow)
