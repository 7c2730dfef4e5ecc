"""
Celery Tasks for the Outbox

Implements the worker side of the Transactional Outbox pattern: pending
realtime events are published to the shared Redis channel, where every API
process's realtime listener forwards them to its connected sockets.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from datetime import timedelta
from typing import Optional

from sqlalchemy import select

from manpower.workers.celery_app import celery_app
from manpower.db.database import get_task_session
from manpower.db.models.outbox_message import OutboxMessage, MessageStatus
from manpower.db.types import utcnow
from manpower.domain.services.outbox_service import OutboxService
from manpower.domain.services.realtime import RealtimeHub
from manpower.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis singleton is bound to this loop; drop it before the loop closes
            from manpower.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Failed to close Redis at task end",
                extra_data={"error": str(e)},
            )
        try:
            # Cancel all pending tasks
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            # Wait for tasks to be cancelled
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _process_single_message(message: OutboxMessage, hub: Optional[RealtimeHub] = None) -> tuple:
    """Publish a single outbox message"""
    # Never fan out locally: the worker has no sockets of its own
    hub = hub or RealtimeHub(fanout=False)

    async with get_task_session() as db:
        outbox_service = OutboxService(db)

        if message.status == MessageStatus.PROCESSING:
            logger.warning(
                "Reclaiming stalled outbox message",
                extra_data={"message_id": message.id, "started_at": str(message.processing_started_at)},
            )

        # Mark as processing
        await outbox_service.mark_as_processing(message.id)

        try:
            await hub.publish(message.channel, message.event, message.payload)
        except Exception as e:
            logger.warning(
                "Outbox publish failed",
                extra_data={
                    "message_id": message.id,
                    "channel": message.channel,
                    "event": message.event,
                    "retry_count": message.retry_count,
                    "error": str(e),
                },
            )
            await outbox_service.mark_as_failed(message.id, str(e))
            return False, str(e)

        await outbox_service.mark_as_sent(message.id)
        return True, "Published"


async def process_pending(limit: int = 50, hub: Optional[RealtimeHub] = None) -> list[dict]:
    async with get_task_session() as db:
        outbox_service = OutboxService(db)
        messages = await outbox_service.get_pending_messages(limit=limit)

    results = []
    for message in messages:
        success, result = await _process_single_message(message, hub)
        results.append({
            "message_id": message.id,
            "success": success,
            "result": result
        })

    if results:
        logger.info(
            "Outbox batch processed",
            extra_data={
                "total": len(results),
                "sent": sum(1 for r in results if r["success"]),
            },
        )
    return results


async def cleanup_sent(days: int = 30) -> dict:
    async with get_task_session() as db:
        cutoff = utcnow() - timedelta(days=days)

        result = await db.execute(
            select(OutboxMessage).where(
                OutboxMessage.status == MessageStatus.SENT,
                OutboxMessage.processed_at < cutoff
            )
        )
        old_messages = result.scalars().all()

        count = len(old_messages)
        for msg in old_messages:
            await db.delete(msg)

        await db.commit()
        return {"deleted": count}


@celery_app.task(name="manpower.workers.tasks.process_outbox_messages")
def process_outbox_messages():
    """
    Process pending messages from the outbox.
    This task runs periodically to ensure reliable delivery of realtime pushes.
    """
    return run_async(process_pending(limit=50))


@celery_app.task(name="manpower.workers.tasks.cleanup_old_messages")
def cleanup_old_messages(days: int = 30):
    """Clean up old published messages from the outbox"""
    return run_async(cleanup_sent(days))
