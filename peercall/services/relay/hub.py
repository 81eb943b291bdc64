"""
Signal Hub

Server side of the signaling channel. Keeps one event queue per subscribed
identity and relays signals between them:

- subscribe:   register an identity (replacing any earlier subscription of it),
               push `connect` to it and `user_list` to everyone
- send_signal: record the signal in the call records, then push a `signal`
               event to the target, if subscribed
- logout:      drop a subscription, rebroadcast `user_list` and end the
               user's calls in the call records
- heartbeat:   push `ping` to everyone; subscribers that stopped draining
               their queue are evicted
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Dict, List, Optional, Tuple

from redis.exceptions import RedisError

from peercall.config.constants import (
    EVENT_CONNECT,
    EVENT_PING,
    EVENT_SIGNAL,
    EVENT_USER_LIST,
    PING_PAYLOAD,
)
from peercall.config.settings import settings
from peercall.schemas.signal import SignalEvent, SignalMessage, UserSummary

from .exceptions import RelayError
from .records import CallRecordStore, call_records

logger = logging.getLogger(__name__)


def format_sse(event: str, data: str, retry_ms: Optional[int] = None) -> str:
    """Encode one text/event-stream frame."""
    lines = []
    if retry_ms is not None:
        lines.append(f"retry: {retry_ms}")
    lines.append(f"event: {event}")
    for part in data.split("\n"):
        lines.append(f"data: {part}")
    return "\n".join(lines) + "\n\n"


@dataclass(eq=False)
class Subscriber:
    email: str
    username: str
    queue: asyncio.Queue
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False

    def push(self, event: str, data: str) -> bool:
        """Queue an event; False when the subscriber is closed or not keeping up."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait((event, data))
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Make room for the end-of-stream marker
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)


class SignalHub:
    def __init__(
        self,
        queue_size: Optional[int] = None,
        retry_ms: Optional[int] = None,
        records: Optional[CallRecordStore] = None,
    ):
        self.queue_size = queue_size or settings.SUBSCRIBER_QUEUE_SIZE
        self.retry_ms = retry_ms if retry_ms is not None else settings.SSE_RETRY_MS
        self.records = records
        # email -> Subscriber
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    # === Subscriptions ===

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get_subscriber(self, email: str) -> Optional[Subscriber]:
        return self._subscribers.get(email)

    def user_list(self) -> List[UserSummary]:
        return [UserSummary(email=s.email, username=s.username) for s in self._subscribers.values()]

    async def subscribe(self, email: str, username: str) -> Subscriber:
        subscriber = Subscriber(email=email, username=username, queue=asyncio.Queue(maxsize=self.queue_size))
        async with self._lock:
            previous = self._subscribers.get(email)
            self._subscribers[email] = subscriber

        if previous is not None:
            logger.info(f"[Relay] {email} subscribed again, closing previous stream")
            previous.close()

        logger.info(f"[Relay] {email} subscribed ({self.subscriber_count} online)")
        subscriber.push(EVENT_CONNECT, f"Connected as {email}")
        await self.broadcast_user_list()
        return subscriber

    async def unsubscribe(self, subscriber: Subscriber) -> bool:
        """Drop `subscriber` if it is still the current one for its identity."""
        async with self._lock:
            removed = self._subscribers.get(subscriber.email) is subscriber
            if removed:
                del self._subscribers[subscriber.email]
        subscriber.close()

        if removed:
            logger.info(f"[Relay] {subscriber.email} unsubscribed ({self.subscriber_count} online)")
            await self.broadcast_user_list()
        return removed

    async def logout(self, email: str) -> bool:
        if self.records is not None:
            await self._update_records(self.records.end_active_calls(email))

        subscriber = self._subscribers.get(email)
        if subscriber is None:
            logger.debug(f"[Relay] Logout for {email} with no subscription")
            return False
        return await self.unsubscribe(subscriber)

    # === Delivery ===

    async def send_signal(self, message: SignalMessage) -> bool:
        """Relay one signal. Returns False when the target is not reachable."""
        if self.records is not None:
            await self._update_records(self.records.record_signal(message))

        subscriber = self._subscribers.get(message.target)
        if subscriber is None:
            logger.warning(f"[Relay] {message.type.value} from {message.sender} to offline {message.target}, dropping")
            return False

        event = SignalEvent(sender=message.sender, type=message.type, data=message.data)
        if subscriber.push(EVENT_SIGNAL, event.model_dump_json()):
            logger.debug(f"[Relay] {message.type.value} {message.sender} -> {message.target}")
            return True

        logger.warning(f"[Relay] Queue full for {message.target}, evicting")
        await self.unsubscribe(subscriber)
        return False

    async def broadcast_user_list(self) -> int:
        payload = json.dumps([u.model_dump() for u in self.user_list()])
        return await self._broadcast(EVENT_USER_LIST, payload)

    async def heartbeat(self) -> int:
        """
        Ping every subscriber once.

        Returns:
            Number of subscribers evicted.
        """
        return len(await self._push_all(EVENT_PING, PING_PAYLOAD))

    async def run_heartbeat(self, interval: Optional[float] = None) -> None:
        """Background task: heartbeat forever."""
        interval = interval or settings.HEARTBEAT_INTERVAL_SECONDS
        logger.info(f"[Relay] Heartbeat every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                evicted = await self.heartbeat()
                if evicted:
                    logger.info(f"[Relay] Heartbeat evicted {evicted} subscriber(s)")
            except Exception as e:
                logger.error(f"[Relay] Heartbeat error: {e}")

    async def _update_records(self, update: Awaitable) -> None:
        # Relaying never fails because of the call records
        try:
            await update
        except (RedisError, RelayError) as e:
            logger.error(f"[Relay] Call record update failed: {e}")

    async def _broadcast(self, event: str, data: str) -> int:
        total = self.subscriber_count
        evicted = await self._push_all(event, data)
        return total - len(evicted)

    async def _push_all(self, event: str, data: str) -> List[Subscriber]:
        stale = [s for s in list(self._subscribers.values()) if not s.push(event, data)]
        if not stale:
            return stale

        async with self._lock:
            for subscriber in stale:
                if self._subscribers.get(subscriber.email) is subscriber:
                    del self._subscribers[subscriber.email]
        for subscriber in stale:
            logger.warning(f"[Relay] Evicting {subscriber.email}: not draining events")
            subscriber.close()

        # Each round removes at least one subscriber, so this terminates
        if self._subscribers:
            await self.broadcast_user_list()
        return stale

    # === Streaming ===

    async def stream(self, subscriber: Subscriber) -> AsyncIterator[str]:
        """
        Yield text/event-stream frames for `subscriber` until it is closed.

        The first frame carries the reconnection interval.
        """
        retry_ms: Optional[int] = self.retry_ms
        try:
            while True:
                item: Optional[Tuple[str, str]] = await subscriber.queue.get()
                if item is None:
                    break
                event, data = item
                yield format_sse(event, data, retry_ms)
                retry_ms = None
        finally:
            await self.unsubscribe(subscriber)


# Global hub instance
signal_hub = SignalHub(records=call_records)
