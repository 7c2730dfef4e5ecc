"""
Outbox worker: publishing pending events and cleaning up sent ones.
"""
import asyncio
import json
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from manpower.db.models.outbox_message import MessageStatus, OutboxMessage
from manpower.db.types import utcnow
from manpower.domain.services.outbox_service import OutboxService
from manpower.domain.services.realtime import RealtimeHub
from manpower.workers import tasks
from manpower.workers.celery_app import celery_app
from tests.helpers import RecordingConnection


@pytest.fixture
def task_session(db_session):
    """Workers open their own sessions; point them at the test session"""

    @asynccontextmanager
    async def _session():
        yield db_session

    with patch("manpower.workers.tasks.get_task_session", _session):
        yield db_session


async def _queue(db_session, room="user:1", event="wallet:updated", payload=None):
    message = await OutboxService(db_session).queue_event(room, event, payload or {"balance": "10.00"})
    await db_session.commit()
    return message


@pytest.mark.unit
async def test_process_pending_publishes_and_marks_sent(task_session, hub, fake_redis):
    message = await _queue(task_session)

    results = await tasks.process_pending(hub=hub)

    assert results == [{"message_id": message.id, "success": True, "result": "Published"}]
    await task_session.refresh(message)
    assert message.status == MessageStatus.SENT
    assert message.processed_at is not None
    channel, raw = fake_redis.published[0]
    envelope = json.loads(raw)
    assert channel == hub.channel
    assert envelope["room"] == "user:1"
    assert envelope["event"] == "wallet:updated"
    assert envelope["data"] == {"balance": "10.00"}


@pytest.mark.unit
async def test_process_pending_schedules_retry_on_failure(task_session, hub, fake_redis):
    message = await _queue(task_session)
    fake_redis.fail_publish = True

    results = await tasks.process_pending(hub=hub)

    assert results[0]["success"] is False
    assert results[0]["result"] == "redis unavailable"
    await task_session.refresh(message)
    assert message.status == MessageStatus.PENDING
    assert message.retry_count == 1
    assert message.next_retry_at > utcnow()

    # Not due yet: the next batch skips it
    assert await tasks.process_pending(hub=hub) == []


@pytest.mark.unit
async def test_process_pending_with_nothing_queued(task_session, hub):
    assert await tasks.process_pending(hub=hub) == []


@pytest.mark.unit
async def test_stalled_processing_message_is_reclaimed(task_session, hub, fake_redis):
    stalled = OutboxMessage(
        channel="user:1", event="wallet:updated", payload={"balance": "5.00"},
        status=MessageStatus.PROCESSING, processing_started_at=utcnow() - timedelta(minutes=10),
    )
    in_flight = OutboxMessage(
        channel="user:1", event="wallet:updated", payload={"balance": "6.00"},
        status=MessageStatus.PROCESSING, processing_started_at=utcnow() - timedelta(seconds=20),
    )
    task_session.add_all([stalled, in_flight])
    await task_session.commit()

    pending = await OutboxService(task_session).get_pending_messages()
    results = await tasks.process_pending(hub=hub)

    assert [m.id for m in pending] == [stalled.id]
    assert results == [{"message_id": stalled.id, "success": True, "result": "Published"}]
    await task_session.refresh(stalled)
    await task_session.refresh(in_flight)
    assert stalled.status == MessageStatus.SENT
    assert in_flight.status == MessageStatus.PROCESSING
    assert len(fake_redis.published) == 1


@pytest.mark.unit
async def test_mark_as_processing_stamps_start_time(task_session):
    message = await _queue(task_session)

    await OutboxService(task_session).mark_as_processing(message.id)

    await task_session.refresh(message)
    assert message.status == MessageStatus.PROCESSING
    assert message.processing_started_at is not None
    assert await OutboxService(task_session).get_pending_messages() == []


@pytest.mark.integration
async def test_queued_event_reaches_socket_with_default_settings(task_session, fake_redis):
    api_hub = RealtimeHub()
    conn = RecordingConnection()
    api_hub.join(conn, "user:1")

    api_hub.start_listener()
    try:
        for _ in range(100):
            if fake_redis.subscribers:
                break
            await asyncio.sleep(0.01)
        await _queue(task_session)
        await tasks.process_pending()
        for _ in range(100):
            if conn.sent:
                break
            await asyncio.sleep(0.01)
    finally:
        await api_hub.stop_listener()

    assert api_hub.fanout is False
    assert conn.sent == [{"event": "wallet:updated", "data": {"balance": "10.00"}}]


@pytest.mark.unit
async def test_cleanup_removes_only_old_sent_messages(task_session):
    old_sent = OutboxMessage(
        channel="user:1", event="notification:new", payload={},
        status=MessageStatus.SENT, processed_at=utcnow() - timedelta(days=40),
    )
    recent_sent = OutboxMessage(
        channel="user:1", event="notification:new", payload={},
        status=MessageStatus.SENT, processed_at=utcnow() - timedelta(days=1),
    )
    old_failed = OutboxMessage(
        channel="user:1", event="notification:new", payload={},
        status=MessageStatus.FAILED, processed_at=utcnow() - timedelta(days=40),
    )
    task_session.add_all([old_sent, recent_sent, old_failed])
    await task_session.commit()

    assert await tasks.cleanup_sent(days=30) == {"deleted": 1}
    remaining = (await task_session.execute(select(OutboxMessage.id))).scalars().all()
    assert sorted(remaining) == sorted([recent_sent.id, old_failed.id])


@pytest.mark.unit
def test_beat_schedule_registers_outbox_tasks():
    schedule = celery_app.conf.beat_schedule

    assert schedule["process-outbox-every-10-seconds"]["task"] == "manpower.workers.tasks.process_outbox_messages"
    assert schedule["cleanup-old-messages-daily"]["task"] == "manpower.workers.tasks.cleanup_old_messages"
    assert tasks.process_outbox_messages.name == "manpower.workers.tasks.process_outbox_messages"
