"""
Message Broker — request/response over pub/sub to the WhatsApp client process.

The WhatsApp client holds the only authenticated session and runs as a
single long-lived process. API and worker processes reach it through four
channels (`{prefix}:send|request|result|groups`):

  caller process                          bot process
  ──────────────                          ───────────
  send_trigger_to_group ──send──────────▶ send text (+ image)
         ▲  (future per requestId)               │
         └──────────────────────result◀──────────┘
  get_available_groups  ──request───────▶ list groups
         ▲                                       │
         └──────────────────────groups◀──────────┘

Each call makes exactly one attempt and waits a bounded time for the
matching result. On timeout the caller gets a failure while the entry stays
`pending`; a late result still updates it. Re-sending is the caller's
decision (`retry_failed_messages`).
"""
from __future__ import annotations

import asyncio
import base64
import json
import secrets
import structlog
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Optional

logger = structlog.get_logger()

TIMEOUT_ERROR = "Timeout waiting for result"
STOPPED_ERROR = "Broker stopped"

MessageCallback = Callable[[str, str], Awaitable[None]]


class BrokerError(Exception):
    """Broker misuse or transport failure."""


# ──────────────────────────────────────────────────────────────
#  Models
# ──────────────────────────────────────────────────────────────

class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class TriggerMessage:
    id: str
    group_name: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: MessageStatus = MessageStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    error: Optional[str] = None
    image_b64: Optional[str] = field(default=None, repr=False)

    @property
    def has_image(self) -> bool:
        return self.image_b64 is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "group_name": self.group_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "error": self.error,
            "has_image": self.has_image,
        }


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message_id": self.message_id, "error": self.error}


@dataclass(frozen=True)
class BrokerChannels:
    prefix: str = "whatsapp:trigger"

    @property
    def send(self) -> str:
        return f"{self.prefix}:send"

    @property
    def request(self) -> str:
        return f"{self.prefix}:request"

    @property
    def result(self) -> str:
        return f"{self.prefix}:result"

    @property
    def groups(self) -> str:
        return f"{self.prefix}:groups"


# ──────────────────────────────────────────────────────────────
#  Pub/Sub transport
# ──────────────────────────────────────────────────────────────

class Subscription(ABC):
    @abstractmethod
    async def close(self) -> None:
        ...


class PubSub(ABC):
    """Fire-and-forget publish plus callback subscriptions."""

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def publish(self, channel: str, payload: str) -> None:
        ...

    @abstractmethod
    async def subscribe(self, channels: list[str], callback: MessageCallback) -> Subscription:
        ...


class _RedisSubscription(Subscription):
    def __init__(self, task: asyncio.Task):
        self._task = task

    async def close(self):
        # the listener closes whichever connection it currently holds
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class RedisPubSub(PubSub):
    """
    Redis PUBLISH/SUBSCRIBE. Each subscription holds its own connection and
    re-subscribes with exponential backoff when that connection drops.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379",
                 reconnect_delay: float = 0.5, max_reconnect_delay: float = 30.0):
        self._redis_url = redis_url
        self._redis = None
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

    async def connect(self):
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        await self._redis.ping()
        logger.info("redis_pubsub_connected", url=self._redis_url)

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, channel, payload):
        from redis.exceptions import RedisError

        if self._redis is None:
            raise BrokerError("Pub/sub not connected")
        try:
            await self._redis.publish(channel, payload)
        except RedisError as e:
            raise BrokerError(f"Publish to {channel} failed: {e}") from e

    async def subscribe(self, channels, callback):
        if self._redis is None:
            raise BrokerError("Pub/sub not connected")
        channels = list(channels)
        pubsub = await self._open(channels)
        task = asyncio.create_task(self._listen(pubsub, channels, callback))
        logger.info("redis_pubsub_subscribed", channels=channels)
        return _RedisSubscription(task)

    async def _open(self, channels: list[str]):
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(*channels)
        return pubsub

    @staticmethod
    async def _close_pubsub(pubsub):
        from redis.exceptions import RedisError

        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.debug("pubsub_close_failed", error=str(e))

    async def _listen(self, pubsub, channels: list[str], callback: MessageCallback):
        from redis.exceptions import RedisError

        delay = self.reconnect_delay
        try:
            while True:
                if pubsub is not None:
                    try:
                        async for message in pubsub.listen():
                            delay = self.reconnect_delay
                            if message.get("type") != "message":
                                continue
                            try:
                                await callback(message["channel"], message["data"])
                            except Exception as e:
                                logger.error("pubsub_callback_error", channel=message.get("channel"),
                                             error=str(e), exc_info=True)
                        logger.warning("pubsub_listener_disconnected", channels=channels,
                                       error="stream ended", retry_in=delay)
                    except (RedisError, OSError) as e:
                        logger.warning("pubsub_listener_disconnected", channels=channels,
                                       error=str(e), retry_in=delay)
                    await self._close_pubsub(pubsub)
                    pubsub = None

                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
                try:
                    pubsub = await self._open(channels)
                    logger.info("pubsub_listener_resubscribed", channels=channels)
                except (RedisError, OSError) as e:
                    logger.warning("pubsub_resubscribe_failed", channels=channels, error=str(e))
        finally:
            if pubsub is not None:
                await self._close_pubsub(pubsub)


class _MemorySubscription(Subscription):
    def __init__(self, hub: InMemoryPubSub, channels: list[str], callback: MessageCallback):
        self._hub = hub
        self._channels = channels
        self._callback = callback

    async def close(self):
        for channel in self._channels:
            callbacks = self._hub._subscribers.get(channel, [])
            if self._callback in callbacks:
                callbacks.remove(self._callback)


class InMemoryPubSub(PubSub):
    """
    Single-process pub/sub for development and tests. Share one instance
    between the broker and the bot bridge to wire them together.
    """

    def __init__(self):
        self._subscribers: dict[str, list[MessageCallback]] = defaultdict(list)
        self.published: list[tuple[str, str]] = []
        self._pending: set[asyncio.Task] = set()

    async def publish(self, channel, payload):
        self.published.append((channel, payload))
        for callback in list(self._subscribers.get(channel, [])):
            # delivered asynchronously, like a real broker
            task = asyncio.create_task(self._deliver(callback, channel, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _deliver(callback: MessageCallback, channel: str, payload: str):
        try:
            await callback(channel, payload)
        except Exception as e:
            logger.error("pubsub_callback_error", channel=channel, error=str(e), exc_info=True)

    async def subscribe(self, channels, callback):
        for channel in channels:
            self._subscribers[channel].append(callback)
        return _MemorySubscription(self, list(channels), callback)

    async def close(self):
        for task in list(self._pending):
            task.cancel()


# ──────────────────────────────────────────────────────────────
#  Broker
# ──────────────────────────────────────────────────────────────

class MessageBroker:
    """
    Caller-side half of the bridge. Construct once per process and inject
    it where needed; starting a second broker in the same process raises
    BrokerError, since two subscriptions would process every result twice.
    """

    _active: ClassVar[Optional[MessageBroker]] = None

    def __init__(
        self,
        pubsub: PubSub,
        channels: Optional[BrokerChannels] = None,
        send_timeout: float = 10.0,
        groups_timeout: float = 5.0,
        max_retries: int = 3,
    ):
        self.pubsub = pubsub
        self.channels = channels or BrokerChannels()
        self.send_timeout = send_timeout
        self.groups_timeout = groups_timeout
        self.max_retries = max_retries
        self._messages: dict[str, TriggerMessage] = {}
        self._waiters: dict[str, asyncio.Future] = {}
        self._groups_waiter: Optional[asyncio.Future] = None
        self._groups_lock = asyncio.Lock()
        self._subscription: Optional[Subscription] = None

    @property
    def started(self) -> bool:
        return self._subscription is not None

    async def start(self) -> None:
        if self.started:
            return
        if MessageBroker._active is not None and MessageBroker._active is not self:
            raise BrokerError("A message broker is already running in this process")
        self._subscription = await self.pubsub.subscribe(
            [self.channels.result, self.channels.groups], self._on_message,
        )
        MessageBroker._active = self
        logger.info("message_broker_started", channels=[self.channels.result, self.channels.groups])

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        # callers in flight get a failed result, not a cancellation
        for request_id, fut in self._waiters.items():
            if not fut.done():
                fut.set_result(SendResult(success=False, message_id=request_id, error=STOPPED_ERROR))
        self._waiters.clear()
        if self._groups_waiter is not None and not self._groups_waiter.done():
            self._groups_waiter.set_result([])
        if MessageBroker._active is self:
            MessageBroker._active = None
        logger.info("message_broker_stopped")

    @staticmethod
    def _new_id() -> str:
        return f"trigger_{int(time.time() * 1000)}_{secrets.token_hex(5)}"

    def _send_envelope(self, entry: TriggerMessage) -> str:
        envelope = {
            "type": "send_to_group",
            "requestId": entry.id,
            "groupName": entry.group_name,
            "message": entry.message,
            "timestamp": entry.timestamp.isoformat(),
        }
        if entry.image_b64 is not None:
            envelope["imageBuffer"] = entry.image_b64
        return json.dumps(envelope)

    # ── Requests ───────────────────────────────────────────

    async def send_trigger_to_group(self, group_name: str, message: str,
                                    image: Optional[bytes] = None) -> SendResult:
        if not self.started:
            raise BrokerError("Message broker not started")

        request_id = self._new_id()
        entry = TriggerMessage(
            id=request_id,
            group_name=group_name,
            message=message,
            max_retries=self.max_retries,
            image_b64=base64.b64encode(image).decode("ascii") if image else None,
        )
        self._messages[request_id] = entry
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[request_id] = waiter

        try:
            await self.pubsub.publish(self.channels.send, self._send_envelope(entry))
        except Exception as e:
            self._waiters.pop(request_id, None)
            entry.status = MessageStatus.FAILED
            entry.error = f"Failed to publish trigger message: {e}"
            logger.error("trigger_publish_failed", request_id=request_id, group=group_name, error=str(e))
            return SendResult(success=False, message_id=request_id, error=entry.error)

        logger.info("trigger_message_published", request_id=request_id, group=group_name,
                    has_image=entry.has_image)
        try:
            return await asyncio.wait_for(asyncio.shield(waiter), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("trigger_result_timeout", request_id=request_id,
                           group=group_name, timeout=self.send_timeout)
            return SendResult(success=False, message_id=request_id, error=TIMEOUT_ERROR)
        finally:
            self._waiters.pop(request_id, None)

    async def get_available_groups(self) -> list[dict[str, str]]:
        """Group list from the bot process; [] on timeout or publish failure."""
        if not self.started:
            raise BrokerError("Message broker not started")

        # one outstanding groups request at a time; the response carries no id
        async with self._groups_lock:
            waiter = asyncio.get_running_loop().create_future()
            self._groups_waiter = waiter
            try:
                await self.pubsub.publish(self.channels.request, json.dumps({"type": "get_groups"}))
                return await asyncio.wait_for(waiter, timeout=self.groups_timeout)
            except asyncio.TimeoutError:
                logger.warning("groups_request_timeout", timeout=self.groups_timeout)
                return []
            except Exception as e:
                logger.error("groups_request_failed", error=str(e))
                return []
            finally:
                self._groups_waiter = None

    # ── Inspection / maintenance ───────────────────────────

    def get_message_status(self, message_id: str) -> Optional[TriggerMessage]:
        entry = self._messages.get(message_id)
        return replace(entry) if entry else None

    def get_all_messages(self) -> list[TriggerMessage]:
        return [replace(m) for m in self._messages.values()]

    async def retry_failed_messages(self) -> int:
        """Re-publish failed entries under their original id. Does not wait for results."""
        retried = 0
        for entry in list(self._messages.values()):
            if entry.status != MessageStatus.FAILED or entry.retry_count >= entry.max_retries:
                continue
            entry.retry_count += 1
            entry.status = MessageStatus.PENDING
            entry.error = None
            try:
                await self.pubsub.publish(self.channels.send, self._send_envelope(entry))
            except Exception as e:
                entry.status = MessageStatus.FAILED
                entry.error = f"Failed to publish trigger message: {e}"
                logger.error("trigger_retry_publish_failed", request_id=entry.id, error=str(e))
                continue
            retried += 1
        if retried:
            logger.info("trigger_messages_retried", count=retried)
        return retried

    def cleanup_old_messages(self, max_age_hours: float = 24) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        stale = [mid for mid, m in self._messages.items() if m.timestamp < cutoff]
        for mid in stale:
            del self._messages[mid]
        if stale:
            logger.info("trigger_messages_cleaned", count=len(stale), max_age_hours=max_age_hours)
        return len(stale)

    # ── Inbound ────────────────────────────────────────────

    async def _on_message(self, channel: str, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("broker_invalid_payload", channel=channel)
            return

        if channel == self.channels.result:
            self._handle_result(payload)
        elif channel == self.channels.groups:
            self._handle_groups(payload)

    def _handle_result(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("requestId")
        entry = self._messages.get(request_id)
        if entry is None:
            logger.debug("trigger_result_unknown", request_id=request_id)
            return

        success = bool(payload.get("success"))
        entry.status = MessageStatus.SENT if success else MessageStatus.FAILED
        entry.error = None if success else (payload.get("error") or "Failed to send message to group")
        if success:
            logger.info("trigger_message_sent", request_id=request_id)
        else:
            logger.warning("trigger_message_failed", request_id=request_id, error=entry.error)

        waiter = self._waiters.get(request_id)
        if waiter is not None and not waiter.done():
            waiter.set_result(SendResult(success=success, message_id=request_id, error=entry.error))

    def _handle_groups(self, payload: Any) -> None:
        waiter = self._groups_waiter
        if waiter is None or waiter.done():
            return
        if not isinstance(payload, list):
            logger.warning("groups_response_invalid")
            waiter.set_result([])
            return
        waiter.set_result([
            {"name": str(g.get("name", "Unknown")), "id": str(g.get("id", ""))}
            for g in payload if isinstance(g, dict)
        ])
