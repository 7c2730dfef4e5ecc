"""
Notification Service - in-app notifications

Every new notification is also queued on the outbox as ``notification:new``
for the recipient's user room, in the same transaction.
"""
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.core.exceptions import NotificationNotFoundError, UserNotFoundError
from manpower.core.logging import get_logger
from manpower.db.models.notification import Notification, NotificationType, NotificationPriority
from manpower.db.models.user import User
from manpower.db.types import utcnow
from manpower.domain.pagination import Pagination, build_pagination, normalize_page, offset_for
from manpower.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

NOTIFICATION_PAGE_SIZE = 20


def serialize_notification(notification: Notification) -> dict:
    """Realtime payload, same shape the REST API returns"""
    return {
        "id": notification.id,
        "userId": notification.user_id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "relatedId": notification.related_id,
        "relatedModel": notification.related_model,
        "isRead": notification.is_read,
        "actionUrl": notification.action_url,
        "priority": notification.priority.value,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        *,
        related_id: Optional[int] = None,
        related_model: Optional[str] = None,
        action_url: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        commit: bool = True,
    ) -> Notification:
        """
        Persist a notification and queue its realtime push.

        With commit=False the caller owns the transaction (used by ledger
        transitions so the notification rolls back with them).
        """
        user = await self.db.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            related_id=related_id,
            related_model=related_model,
            action_url=action_url,
            priority=priority,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.flush()

        await OutboxService(self.db).queue_user_event(
            user_id, "notification:new", serialize_notification(notification)
        )

        if commit:
            await self.db.commit()

        logger.info(
            "Notification created",
            extra_data={
                "notification_id": notification.id,
                "user_id": user_id,
                "type": type.value,
            },
        )
        return notification

    async def get_user_notifications(
        self,
        user_id: int,
        is_read: Optional[bool] = None,
        type: Optional[NotificationType] = None,
        page: int = 1,
        limit: int = NOTIFICATION_PAGE_SIZE,
    ) -> tuple[list[Notification], Pagination, int]:
        """Returns (notifications newest first, pagination, unread count)"""
        page, limit = normalize_page(page, limit, NOTIFICATION_PAGE_SIZE)

        conditions = [Notification.user_id == user_id]
        if is_read is not None:
            conditions.append(Notification.is_read == is_read)
        if type is not None:
            conditions.append(Notification.type == type)

        total = await self.db.scalar(
            select(func.count()).select_from(Notification).where(*conditions)
        )
        result = await self.db.execute(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset_for(page, limit))
            .limit(limit)
        )
        notifications = list(result.scalars().all())
        unread_count = await self.get_unread_count(user_id)

        return notifications, build_pagination(page, limit, total or 0), unread_count

    async def _get_owned(self, notification_id: int, user_id: int) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotificationNotFoundError(notification_id)
        return notification

    async def mark_as_read(self, notification_id: int, user_id: int) -> Notification:
        notification = await self._get_owned(notification_id, user_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            await self.db.commit()
        return notification

    async def mark_all_as_read(self, user_id: int) -> int:
        """Returns how many notifications changed"""
        result = await self.db.execute(
            select(Notification).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        )
        unread = list(result.scalars().all())
        now = utcnow()
        for notification in unread:
            notification.is_read = True
            notification.read_at = now
        await self.db.commit()
        return len(unread)

    async def delete_notification(self, notification_id: int, user_id: int) -> None:
        notification = await self._get_owned(notification_id, user_id)
        await self.db.delete(notification)
        await self.db.commit()

    async def get_unread_count(self, user_id: int) -> int:
        count = await self.db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return count or 0
