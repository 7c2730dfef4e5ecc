"""
Realtime Hub - room based broadcast to connected WebSocket clients

Rooms:
- ``user:<id>``: personal channel, joined on connect
- ``conversation:<id>``: joined explicitly with ``chat:join``

Delivery is fire-and-forget. A listener subscribed to one Redis Pub/Sub channel
re-emits messages published by other processes (the outbox worker and other API
replicas) to local connections. With REALTIME_REDIS_FANOUT every local emit is
also published to that channel, tagged with this process's instance id.
"""
import asyncio
import json
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from manpower.core import redis_client
from manpower.core.circuit_breaker import get_realtime_circuit_breaker
from manpower.core.config import settings
from manpower.core.logging import get_logger

logger = get_logger(__name__)


async def _default_redis() -> Any:
    return await redis_client.get_redis()


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


class RealtimeHub:
    """In-process registry of connections per room"""

    def __init__(
        self,
        *,
        fanout: Optional[bool] = None,
        channel: Optional[str] = None,
        redis_factory: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self.instance_id = uuid.uuid4().hex
        self.fanout = settings.REALTIME_REDIS_FANOUT if fanout is None else fanout
        self.channel = channel or settings.REALTIME_CHANNEL
        self._redis_factory = redis_factory or _default_redis
        self._rooms: dict[str, set[Connection]] = defaultdict(set)
        self._memberships: dict[Connection, set[str]] = defaultdict(set)
        self._listener_task: Optional[asyncio.Task] = None

    # ── membership ──

    def join(self, connection: Connection, room: str) -> None:
        self._rooms[room].add(connection)
        self._memberships[connection].add(room)

    def leave(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._rooms[room]
        rooms = self._memberships.get(connection)
        if rooms is not None:
            rooms.discard(room)

    def disconnect(self, connection: Connection) -> None:
        for room in list(self._memberships.pop(connection, set())):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self._rooms[room]

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def rooms_of(self, connection: Connection) -> set[str]:
        return set(self._memberships.get(connection, set()))

    # ── broadcast ──

    async def emit(
        self,
        room: str,
        event: str,
        data: Any,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send to local connections in ``room`` and fan out to other processes"""
        delivered = await self.emit_local(room, event, data, exclude=exclude)
        if self.fanout:
            try:
                await self.publish(room, event, data)
            except Exception as e:
                # Local delivery already happened; remote replicas miss this one
                logger.warning(
                    "Realtime fan-out publish failed",
                    extra_data={"room": room, "event": event, "error": str(e)},
                )
        return delivered

    async def emit_local(
        self,
        room: str,
        event: str,
        data: Any,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Returns the number of connections the event reached"""
        message = {"event": event, "data": data}
        delivered = 0
        for connection in list(self._rooms.get(room, ())):
            if connection is exclude:
                continue
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.info(
                    "Dropping unreachable realtime connection",
                    extra_data={"room": room, "event": event, "error": str(e)},
                )
                self.disconnect(connection)
        return delivered

    async def publish(self, room: str, event: str, data: Any) -> None:
        """
        Publish to the shared Redis channel (breaker protected).

        Raises on failure so the outbox worker can schedule a retry.
        """
        envelope = json.dumps(
            {
                "origin": self.instance_id,
                "room": room,
                "event": event,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            ensure_ascii=False,
            default=str,
        )

        async def _publish() -> None:
            redis = await self._redis_factory()
            await redis.publish(self.channel, envelope)

        await get_realtime_circuit_breaker().execute(_publish)

    async def handle_published(self, raw: str | bytes) -> int:
        """Re-emit a message another process published; own messages are skipped"""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            envelope = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed realtime message", extra_data={"raw": raw[:200]})
            return 0
        if envelope.get("origin") == self.instance_id:
            return 0
        room = envelope.get("room")
        event = envelope.get("event")
        if not room or not event:
            return 0
        return await self.emit_local(room, event, envelope.get("data"))

    # ── listener ──

    async def _listen(self) -> None:
        try:
            redis = await self._redis_factory()
        except Exception as e:
            logger.error(
                "Realtime listener could not connect",
                extra_data={"channel": self.channel, "error": str(e)},
            )
            return
        pubsub = redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            logger.info(
                "Realtime listener subscribed",
                extra_data={"channel": self.channel, "instance_id": self.instance_id},
            )
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "message":
                    await self.handle_published(message["data"])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Realtime listener crashed",
                extra_data={"channel": self.channel, "error": str(e)},
                exc_info=True,
            )
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
            logger.info("Realtime listener stopped", extra_data={"channel": self.channel})

    def start_listener(self) -> None:
        if self._listener_task is None:
            self._listener_task = asyncio.create_task(self._listen())

    async def stop_listener(self) -> None:
        task, self._listener_task = self._listener_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


_hub: Optional[RealtimeHub] = None


def get_realtime_hub() -> RealtimeHub:
    """Process-wide hub"""
    global _hub
    if _hub is None:
        _hub = RealtimeHub()
    return _hub
