"""
Outbox Service - Transactional Outbox Pattern for realtime pushes

Ledger transitions queue their realtime events here inside their own
transaction. The outbox worker publishes them afterwards, so a push is never
sent for a transition that rolled back, and a push that fails is retried.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, List

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from manpower.core.config import settings
from manpower.db.models.outbox_message import OutboxMessage, MessageStatus
from manpower.db.types import utcnow


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Calculate exponential backoff seconds with a hard upper bound.

        backoff = base_seconds * (2 ** retry_count)

    The result is capped at max_backoff_seconds and avoids computing huge
    powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # 2**retry_count >= ceil(max/base) can be decided from bit lengths alone
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    is_power_of_two = (required_multiplier & (required_multiplier - 1)) == 0
    threshold = required_multiplier.bit_length() - 1
    if not is_power_of_two:
        threshold += 1

    if retry_count >= threshold:
        return max_backoff_seconds

    backoff = base_seconds * (1 << retry_count)
    return min(backoff, max_backoff_seconds)


class OutboxService:
    """Service for managing outbox messages"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_event(
        self,
        channel: str,
        event: str,
        payload: dict[str, Any],
    ) -> OutboxMessage:
        """Queue one realtime event in the caller's transaction"""
        message = OutboxMessage(
            channel=channel,
            event=event,
            payload=payload,
            status=MessageStatus.PENDING,
            retry_count=0,
        )
        self.db.add(message)
        return message

    async def queue_user_event(self, user_id: int, event: str, payload: dict[str, Any]) -> OutboxMessage:
        return await self.queue_event(f"user:{user_id}", event, payload)

    async def get_pending_messages(self, limit: int = 100) -> List[OutboxMessage]:
        """
        Pending messages whose retry time (if any) has come, plus PROCESSING
        messages a crashed worker left behind for longer than
        OUTBOX_PROCESSING_TIMEOUT_SECONDS.
        """
        now = utcnow()
        stale_before = now - timedelta(seconds=settings.OUTBOX_PROCESSING_TIMEOUT_SECONDS)
        result = await self.db.execute(
            select(OutboxMessage)
            .where(
                or_(
                    and_(
                        OutboxMessage.status == MessageStatus.PENDING,
                        or_(OutboxMessage.next_retry_at.is_(None), OutboxMessage.next_retry_at <= now),
                    ),
                    and_(
                        OutboxMessage.status == MessageStatus.PROCESSING,
                        or_(
                            OutboxMessage.processing_started_at.is_(None),
                            OutboxMessage.processing_started_at <= stale_before,
                        ),
                    ),
                )
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get(self, message_id: int) -> OutboxMessage | None:
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def mark_as_processing(self, message_id: int) -> None:
        """Mark message as being processed"""
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.PROCESSING
            message.processing_started_at = utcnow()
            await self.db.commit()

    async def mark_as_sent(self, message_id: int) -> None:
        """Mark message as successfully sent"""
        message = await self._get(message_id)
        if message:
            message.status = MessageStatus.SENT
            message.processed_at = utcnow()
            await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Record a failed attempt; back off or give up after max_retries"""
        message = await self._get(message_id)
        if message:
            message.retry_count = (message.retry_count or 0) + 1
            message.last_error = error[:1000]

            if message.retry_count >= message.max_retries:
                message.status = MessageStatus.FAILED
                message.processed_at = utcnow()
            else:
                message.status = MessageStatus.PENDING
                backoff_seconds = _calculate_backoff_seconds(
                    message.retry_count,
                    base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                    max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
                )
                message.next_retry_at = utcnow() + timedelta(seconds=backoff_seconds)

            await self.db.commit()
