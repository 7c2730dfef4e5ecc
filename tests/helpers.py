"""
Shared fakes and helpers for the test suite
"""
import asyncio
import itertools
from typing import Any

from manpower.core.auth import create_access_token
from manpower.db.models.user import User
from manpower.domain.services.payment_processor import BasePaymentProcessor, PaymentIntent


def auth_headers(user: User) -> dict[str, str]:
    """Bearer header for ``user``"""
    token = create_access_token(user.id, user.role.value)
    return {"Authorization": f"Bearer {token}"}


class FakePaymentProcessor(BasePaymentProcessor):
    """Records intent requests and answers with deterministic ids"""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self._ids = itertools.count(1)

    @property
    def provider_name(self) -> str:
        return "fake"

    async def create_payment_intent(self, amount_minor: int, currency: str, metadata: dict) -> PaymentIntent:
        self.calls.append({"amount_minor": amount_minor, "currency": currency, "metadata": metadata})
        n = next(self._ids)
        return PaymentIntent(id=f"pi_test_{n}", client_secret=f"pi_test_{n}_secret_abc")


class RecordingConnection:
    """Stands in for a WebSocket: keeps every frame it was sent"""

    def __init__(self, name: str = "conn") -> None:
        self.name = name
        self.sent: list[dict] = []

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]

    def __repr__(self) -> str:
        return f"RecordingConnection({self.name!r})"


class BrokenConnection(RecordingConnection):
    async def send_json(self, data: Any) -> None:
        raise ConnectionError("socket closed")


class FakePubSub:
    """Subscriber side of FakeRedis; receives what is published after subscribe"""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: set[str] = set()
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        self.channels.add(channel)
        self._redis.subscribers.append(self)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def deliver(self, channel: str, message: str) -> None:
        if channel in self.channels:
            self._queue.put_nowait({"type": "message", "channel": channel, "data": message})

    async def unsubscribe(self, channel: str) -> None:
        self.channels.discard(channel)

    async def aclose(self) -> None:
        if self in self._redis.subscribers:
            self._redis.subscribers.remove(self)
        self.closed = True


class FakeRedis:
    """In-memory stand-in for the Redis Pub/Sub path"""

    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []
        self.subscribers: list[FakePubSub] = []
        self.fail_publish = False

    async def ping(self) -> bool:
        return True

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("redis unavailable")
        self.published.append((channel, message))
        for subscriber in list(self.subscribers):
            subscriber.deliver(channel, message)
        return len(self.subscribers)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def aclose(self) -> None:
        self.published.clear()
