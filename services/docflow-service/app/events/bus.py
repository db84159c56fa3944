# app/events/bus.py
from __future__ import annotations

import asyncio
import random
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

import aio_pika
import orjson
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractIncomingMessage, AbstractQueue

from app.config import Settings, settings as default_settings
from app.errors import BusNotConnectedError, UnknownTopicError
from app.logger import get_logger
from app.middleware.correlation import current_correlation_id
from app.schemas.envelope import FileEventEnvelope, PublishResult, utc_now_iso

logger = get_logger("events.bus")

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]
ConnectFactory = Callable[..., Awaitable[AbstractConnection]]


def new_message_id() -> str:
    return f"{int(time.time() * 1000)}-{random.random()}"


def build_message(
    payload: Mapping[str, Any],
    *,
    source: str,
    ttl_seconds: int,
    correlation_id: Optional[str] = None,
) -> Message:
    """Wrap a wire envelope in a persistent AMQP message with filterable headers."""
    event_type = payload.get("eventType")
    headers = {
        "source": source,
        "eventType": event_type,
        "userId": payload.get("userId"),
        "timestamp": utc_now_iso(),
        "correlationId": correlation_id,
    }
    return Message(
        orjson.dumps(dict(payload)),
        message_id=new_message_id(),
        content_type="application/json",
        type=event_type or "file-event",
        expiration=timedelta(seconds=ttl_seconds),
        delivery_mode=DeliveryMode.PERSISTENT,
        correlation_id=correlation_id,
        headers={k: v for k, v in headers.items() if v is not None},
    )


class EventBus:
    """
    Publish/subscribe over durable queues, one queue per logical topic.

    Construct it, `await connect()` once, share the instance. Publishing or
    subscribing before `connect()` fails fast with BusNotConnectedError.
    """

    def __init__(
        self,
        *,
        url: str,
        topic_queues: Mapping[str, str],
        max_concurrent_calls: int = 10,
        auto_complete: bool = True,
        max_wait_time_ms: int = 60000,
        max_delivery_count: int = 10,
        message_ttl_seconds: int = 24 * 60 * 60,
        source: str = "file-upload-service",
        connection_name: str = "docflow-service",
        connect_factory: ConnectFactory = aio_pika.connect_robust,
    ) -> None:
        self._url = url
        self._topic_queues = dict(topic_queues)
        self._max_concurrent_calls = max_concurrent_calls
        self._auto_complete = auto_complete
        self._max_wait_time_ms = max_wait_time_ms
        self._max_delivery_count = max_delivery_count
        self._message_ttl_seconds = message_ttl_seconds
        self._source = source
        self._connection_name = connection_name
        self._connect_factory = connect_factory

        self._lock = asyncio.Lock()
        self._connection: Optional[AbstractConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._queues: Dict[str, AbstractQueue] = {}
        self._consumers: Dict[str, Tuple[AbstractQueue, str]] = {}

    @classmethod
    def from_settings(cls, s: Settings = default_settings, **overrides: Any) -> "EventBus":
        kwargs: Dict[str, Any] = dict(
            url=s.SERVICE_BUS_URL,
            topic_queues=s.topic_queues,
            max_concurrent_calls=s.SERVICE_BUS_MAX_CONCURRENT_CALLS,
            auto_complete=s.AUTO_COMPLETE_MESSAGES,
            max_wait_time_ms=s.SERVICE_BUS_MAX_WAIT_TIME_MS,
            max_delivery_count=s.SERVICE_BUS_MAX_DELIVERY_COUNT,
            message_ttl_seconds=s.MESSAGE_TTL_SECONDS,
            source=s.EVENT_SOURCE,
            connection_name=s.SERVICE_NAME,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def is_connected(self) -> bool:
        return self._channel is not None

    # ----------------- lifecycle -----------------

    async def connect(self) -> None:
        """Open the connection and channel. Safe to call concurrently; opens once."""
        async with self._lock:
            if self._channel is not None:
                return
            logger.info("Connecting to message bus ...")
            connection = await self._connect_factory(
                self._url,
                timeout=self._max_wait_time_ms / 1000,
                client_properties={"connection_name": self._connection_name},
            )
            channel = await connection.channel()
            await channel.set_qos(prefetch_count=self._max_concurrent_calls)
            self._connection = connection
            self._channel = channel
            logger.info("Message bus connected; topics=%s", self._topic_queues)

    async def close(self) -> None:
        async with self._lock:
            for tag in list(self._consumers):
                await self._cancel(tag)
            if self._channel is not None and not self._channel.is_closed:
                await self._channel.close()
            if self._connection is not None and not self._connection.is_closed:
                await self._connection.close()
            self._channel = None
            self._connection = None
            self._queues.clear()
        logger.info("Message bus closed")

    # ----------------- routing -----------------

    def queue_for(self, topic: str) -> str:
        try:
            return self._topic_queues[topic]
        except KeyError:
            raise UnknownTopicError(topic) from None

    async def _declare(self, queue_name: str) -> AbstractQueue:
        async with self._lock:
            if queue_name in self._queues:
                return self._queues[queue_name]
            channel = self._require_channel("declare queues")
            dead_letter = f"{queue_name}.deadletter"
            await channel.declare_queue(dead_letter, durable=True)
            queue = await channel.declare_queue(
                queue_name,
                durable=True,
                arguments={
                    "x-queue-type": "quorum",
                    "x-delivery-limit": self._max_delivery_count,
                    "x-dead-letter-exchange": "",
                    "x-dead-letter-routing-key": dead_letter,
                },
            )
            self._queues[queue_name] = queue
            return queue

    def _require_channel(self, action: str) -> AbstractChannel:
        if self._channel is None:
            raise BusNotConnectedError(action)
        return self._channel

    # ----------------- publish -----------------

    async def publish_event(
        self, topic: str, envelope: Union[FileEventEnvelope, Mapping[str, Any]]
    ) -> PublishResult:
        channel = self._require_channel("publish events")
        queue_name = self.queue_for(topic)
        await self._declare(queue_name)

        payload = envelope.to_wire() if isinstance(envelope, FileEventEnvelope) else dict(envelope)
        message = build_message(
            payload,
            source=self._source,
            ttl_seconds=self._message_ttl_seconds,
            correlation_id=current_correlation_id(),
        )
        await channel.default_exchange.publish(message, routing_key=queue_name)
        logger.info(
            "Published %s to queue '%s' message_id=%s",
            payload.get("eventType"), queue_name, message.message_id,
        )
        return PublishResult(success=True, message_id=message.message_id, queue=queue_name)

    # ----------------- subscribe -----------------

    def build_consumer(
        self, subscription_name: str, handler: EventHandler
    ) -> Callable[[AbstractIncomingMessage], Awaitable[None]]:
        """
        Delivery callback for one subscription.

        With auto-complete the message is acked when the handler returns and
        nacked back onto the queue when it raises. Without auto-complete the
        broker already dropped the message, so failures are only logged.
        """
        auto_complete = self._auto_complete

        async def _on_message(message: AbstractIncomingMessage) -> None:
            try:
                payload = orjson.loads(message.body)
            except orjson.JSONDecodeError:
                logger.error("[%s] undecodable message %s dropped to dead-letter", subscription_name, message.message_id)
                if auto_complete:
                    await message.reject(requeue=False)
                return

            if not isinstance(payload, dict):
                logger.error("[%s] non-object message %s dropped to dead-letter", subscription_name, message.message_id)
                if auto_complete:
                    await message.reject(requeue=False)
                return

            logger.info(
                "[%s] received message %s type=%s redelivered=%s",
                subscription_name, message.message_id, message.type, message.redelivered,
            )
            try:
                await handler(payload)
            except Exception:
                logger.exception("[%s] handler failed for message %s", subscription_name, message.message_id)
                if auto_complete:
                    await message.nack(requeue=True)
                return

            if auto_complete:
                await message.ack()
            logger.info("[%s] processed message %s", subscription_name, message.message_id)

        return _on_message

    async def subscribe(self, topic: str, subscription_name: str, handler: EventHandler) -> str:
        self._require_channel("subscribe to events")
        queue = await self._declare(self.queue_for(topic))
        tag = await queue.consume(
            self.build_consumer(subscription_name, handler),
            no_ack=not self._auto_complete,
        )
        self._consumers[tag] = (queue, subscription_name)
        logger.info("Subscribed '%s' to topic '%s' (queue '%s')", subscription_name, topic, queue.name)
        return tag

    async def unsubscribe(self, consumer_tag: str) -> None:
        async with self._lock:
            await self._cancel(consumer_tag)

    async def _cancel(self, consumer_tag: str) -> None:
        entry = self._consumers.pop(consumer_tag, None)
        if entry is None:
            return
        queue, subscription_name = entry
        await queue.cancel(consumer_tag)
        logger.info("Cancelled subscription '%s'", subscription_name)

    def status(self) -> Dict[str, Any]:
        return {
            "isConnected": self.is_connected,
            "provider": "amqp-queue" if self.is_connected else "disconnected",
            "topics": dict(self._topic_queues),
            "declaredQueues": sorted(self._queues),
            "activeConsumers": sorted(name for _, name in self._consumers.values()),
        }
