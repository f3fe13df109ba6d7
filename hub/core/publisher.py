"""Event publishing.

`publish(destination, payload)` durably enqueues one message and reports the
outcome as a `PublishResult`. Broker failures never escape as exceptions.

Strategies:
- AmqpPublisher: a new dedicated connection per call (default). Isolation over
  throughput: a failing publish cannot poison a shared channel, at the cost of
  connection churn.
- SharedChannelPublisher: reuses the connection manager's long-lived channel.
- RetryingPublisher: bounded retry with backoff around either of the above.

Delivery guarantee is at-least-once intent (durable queue + persistent
messages). Without publisher confirms a success only means the client accepted
the frame, not that the broker stored it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Tuple, Union

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection
from aio_pika.exceptions import AMQPError, DeliveryError, PublishError
from pamqp.commands import Basic

from hub.contracts.queues import CONTENT_TYPE_JSON
from hub.contracts.validation import validate_wire_message

from .broker import BrokerConnectionManager, ConnectionFactory, close_quietly
from .errors import BrokerUnavailable, PublishErrorKind, PublishResult
from .models import EventEnvelope, iso_utc
from .settings import Settings


logger = logging.getLogger(__name__)


class Publisher(Protocol):
    async def publish(self, destination: str, payload: Dict[str, Any]) -> PublishResult:
        ...

    async def aclose(self) -> None:
        ...


def classify_exception(e: BaseException) -> PublishErrorKind:
    if isinstance(e, asyncio.TimeoutError):
        return PublishErrorKind.TIMEOUT
    if isinstance(e, (DeliveryError, PublishError)):
        return PublishErrorKind.REJECTED
    if isinstance(e, (AMQPError, OSError, BrokerUnavailable)):
        return PublishErrorKind.CONNECTIVITY
    return PublishErrorKind.UNEXPECTED


def prepare_envelope(
    destination: str, payload: Dict[str, Any], *, source: str
) -> Union[Tuple[EventEnvelope, bytes], PublishResult]:
    """Build and encode the envelope, or return a SERIALIZATION failure."""

    envelope = EventEnvelope.build(destination, payload, source=source)
    try:
        validate_wire_message(envelope.to_wire_dict())
        body = envelope.to_bytes()
    except (TypeError, ValueError) as e:
        logger.error(f"Cannot encode event for {destination}: {e}")
        return PublishResult.failure(destination, PublishErrorKind.SERIALIZATION, str(e), event_id=envelope.event_id)
    return envelope, body


def build_message(envelope: EventEnvelope, body: bytes) -> aio_pika.Message:
    return aio_pika.Message(
        body=body,
        content_type=CONTENT_TYPE_JSON,
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        message_id=envelope.event_id,
        timestamp=envelope.published_at,
        app_id=envelope.source,
    )


def is_rejected(confirmation: Any) -> bool:
    """True if the broker negatively acknowledged the publish (confirm mode only)."""

    return isinstance(confirmation, (Basic.Nack, Basic.Reject))


async def send_envelope(channel: AbstractChannel, envelope: EventEnvelope, body: bytes) -> bool:
    """Declare the destination durable and publish; return whether the send was accepted."""

    await channel.declare_queue(envelope.destination, durable=True)
    confirmation = await channel.default_exchange.publish(
        build_message(envelope, body),
        routing_key=envelope.destination,
    )
    return not is_rejected(confirmation)


def _log_published(envelope: EventEnvelope) -> None:
    logger.info(
        f"Event published to {envelope.destination}: "
        f"orderId={envelope.payload.get('orderId', 'N/A')}, "
        f"eventId={envelope.event_id}, timestamp={iso_utc(envelope.published_at)}"
    )


class AmqpPublisher:
    """One fresh connection and channel per publish call."""

    def __init__(
        self,
        url: str,
        *,
        source: str = "hub-service",
        connect_timeout_seconds: float = 5.0,
        publish_timeout_seconds: float = 5.0,
        close_delay_seconds: float = 0.1,
        publisher_confirms: bool = False,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.url = url
        self.source = source
        self.connect_timeout_seconds = connect_timeout_seconds
        self.publish_timeout_seconds = publish_timeout_seconds
        self.close_delay_seconds = close_delay_seconds
        self.publisher_confirms = publisher_confirms
        self._connection_factory = connection_factory or aio_pika.connect
        self._pending_closes: Set[asyncio.Task] = set()

    @property
    def pending_closes(self) -> int:
        return len(self._pending_closes)

    async def publish(self, destination: str, payload: Dict[str, Any]) -> PublishResult:
        prepared = prepare_envelope(destination, payload, source=self.source)
        if isinstance(prepared, PublishResult):
            return prepared
        envelope, body = prepared

        logger.info(f"Publishing to {destination}...")
        connection: Optional[AbstractConnection] = None
        channel: Optional[AbstractChannel] = None
        try:
            connection = await asyncio.wait_for(
                self._connection_factory(self.url), timeout=self.connect_timeout_seconds
            )
            channel = await asyncio.wait_for(
                connection.channel(publisher_confirms=self.publisher_confirms),
                timeout=self.connect_timeout_seconds,
            )
            accepted = await asyncio.wait_for(
                send_envelope(channel, envelope, body), timeout=self.publish_timeout_seconds
            )
        except Exception as e:
            kind = classify_exception(e)
            if kind is PublishErrorKind.UNEXPECTED:
                logger.exception(f"Error publishing to {destination}")
            else:
                logger.error(f"Error publishing to {destination} ({kind.value}): {e}")
            self._schedule_close(channel, connection)
            return PublishResult.failure(destination, kind, str(e) or kind.value, event_id=envelope.event_id)

        self._schedule_close(channel, connection)

        if not accepted:
            logger.error(f"Broker rejected publish to {destination}")
            return PublishResult.failure(
                destination, PublishErrorKind.REJECTED, "send was not accepted", event_id=envelope.event_id
            )

        _log_published(envelope)
        return PublishResult.success(destination, envelope.event_id)

    def _schedule_close(self, channel: Optional[AbstractChannel], connection: Optional[AbstractConnection]) -> None:
        if channel is None and connection is None:
            return
        task = asyncio.get_running_loop().create_task(self._close_later(channel, connection))
        self._pending_closes.add(task)
        task.add_done_callback(self._pending_closes.discard)

    async def _close_later(self, channel: Optional[AbstractChannel], connection: Optional[AbstractConnection]) -> None:
        # Let in-flight frames flush before tearing the connection down.
        await asyncio.sleep(self.close_delay_seconds)
        await close_quietly(channel, connection)

    async def aclose(self) -> None:
        """Wait for every scheduled close to finish."""

        if self._pending_closes:
            await asyncio.gather(*list(self._pending_closes), return_exceptions=True)


class SharedChannelPublisher:
    """Publishes over the connection manager's long-lived channel."""

    def __init__(
        self,
        manager: BrokerConnectionManager,
        *,
        source: str = "hub-service",
        publish_timeout_seconds: float = 5.0,
    ) -> None:
        self.manager = manager
        self.source = source
        self.publish_timeout_seconds = publish_timeout_seconds

    async def _send(self, envelope: EventEnvelope, body: bytes) -> bool:
        async with self.manager.channel() as channel:
            return await send_envelope(channel, envelope, body)

    async def publish(self, destination: str, payload: Dict[str, Any]) -> PublishResult:
        prepared = prepare_envelope(destination, payload, source=self.source)
        if isinstance(prepared, PublishResult):
            return prepared
        envelope, body = prepared

        try:
            accepted = await asyncio.wait_for(self._send(envelope, body), timeout=self.publish_timeout_seconds)
        except Exception as e:
            kind = classify_exception(e)
            if kind is PublishErrorKind.UNEXPECTED:
                logger.exception(f"Error publishing to {destination}")
            else:
                logger.error(f"Error publishing to {destination} ({kind.value}): {e}")
            return PublishResult.failure(destination, kind, str(e) or kind.value, event_id=envelope.event_id)

        if not accepted:
            logger.error(f"Broker rejected publish to {destination}")
            return PublishResult.failure(
                destination, PublishErrorKind.REJECTED, "send was not accepted", event_id=envelope.event_id
            )

        _log_published(envelope)
        return PublishResult.success(destination, envelope.event_id)

    async def aclose(self) -> None:
        # The manager owns the connection.
        return None


class RetryingPublisher:
    """Retries transient failures (connectivity, timeout) with exponential backoff."""

    def __init__(
        self,
        inner: Publisher,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.inner = inner
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def publish(self, destination: str, payload: Dict[str, Any]) -> PublishResult:
        result = await self.inner.publish(destination, payload)
        attempt = 1
        while result.retryable and attempt < self.max_attempts:
            delay = self.backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                f"Publish to {destination} failed ({result.error.value if result.error else 'unknown'}), "
                f"retrying in {delay:.2f}s (attempt {attempt + 1}/{self.max_attempts})"
            )
            await self._sleep(delay)
            result = await self.inner.publish(destination, payload)
            attempt += 1
        return result

    async def aclose(self) -> None:
        await self.inner.aclose()


def build_publisher(
    settings: Settings,
    manager: BrokerConnectionManager,
    *,
    connection_factory: ConnectionFactory | None = None,
) -> Publisher:
    rabbit = settings.rabbitmq
    publisher: Publisher
    if rabbit.publisher_mode == "shared":
        publisher = SharedChannelPublisher(
            manager,
            source=settings.service_name,
            publish_timeout_seconds=rabbit.publish_timeout_seconds,
        )
    else:
        publisher = AmqpPublisher(
            rabbit.url,
            source=settings.service_name,
            connect_timeout_seconds=rabbit.connect_timeout_seconds,
            publish_timeout_seconds=rabbit.publish_timeout_seconds,
            close_delay_seconds=rabbit.close_delay_seconds,
            publisher_confirms=rabbit.publisher_confirms,
            connection_factory=connection_factory,
        )
    if rabbit.retry.max_attempts > 1:
        publisher = RetryingPublisher(
            publisher,
            max_attempts=rabbit.retry.max_attempts,
            backoff_seconds=rabbit.retry.backoff_seconds,
        )
    return publisher
