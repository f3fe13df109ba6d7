"""Broker connection lifecycle.

`BrokerConnectionManager` owns the long-lived connection/channel pair used for
startup validation, health reporting and the shared-channel publisher. It is
built explicitly and injected into the API; nothing here is module-global.

Publishing by default does NOT depend on this connection: the per-call publisher
opens its own (see `hub.core.publisher`).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, Tuple

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection

from hub.contracts.queues import CONNECTION_TEST

from .errors import BrokerUnavailable


logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[str], Awaitable[AbstractConnection]]


async def close_quietly(channel: Optional[AbstractChannel], connection: Optional[AbstractConnection]) -> None:
    """Close a channel/connection pair; failures are logged, never raised."""

    if channel is not None:
        try:
            await channel.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing channel: {e}")
    if connection is not None:
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing connection: {e}")


class BrokerConnectionManager:
    def __init__(
        self,
        url: str,
        *,
        connect_timeout_seconds: float = 5.0,
        publisher_confirms: bool = False,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.url = url
        self.connect_timeout_seconds = connect_timeout_seconds
        self.publisher_confirms = publisher_confirms
        self._connection_factory = connection_factory or aio_pika.connect
        self._connection: Optional[AbstractConnection] = None
        self._channel: Optional[AbstractChannel] = None
        # Serializes use of the shared channel against close().
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        conn = self._connection
        return conn is not None and self._channel is not None and not conn.is_closed

    async def _open(self) -> AbstractConnection:
        return await asyncio.wait_for(self._connection_factory(self.url), timeout=self.connect_timeout_seconds)

    async def _open_verified(self) -> Tuple[AbstractConnection, AbstractChannel]:
        """Open a connection + channel and smoke-test it; partial opens are closed before raising."""

        connection: Optional[AbstractConnection] = None
        channel: Optional[AbstractChannel] = None
        try:
            connection = await self._open()
            channel = await asyncio.wait_for(
                connection.channel(publisher_confirms=self.publisher_confirms),
                timeout=self.connect_timeout_seconds,
            )

            # The channel must accept operations, not just exist.
            await channel.declare_queue(CONNECTION_TEST, durable=False)
            await channel.queue_delete(CONNECTION_TEST)
        except Exception:
            await close_quietly(channel, connection)
            raise
        return connection, channel

    async def connect(self) -> bool:
        """Open the long-lived connection and smoke-test its channel.

        Never raises: any failure is logged and reported as False.
        """

        logger.info("Connecting to RabbitMQ...")
        try:
            connection, channel = await self._open_verified()
        except asyncio.TimeoutError:
            logger.error(f"Failed to connect to RabbitMQ: timed out after {self.connect_timeout_seconds}s")
            return False
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            return False

        async with self._lock:
            previous = (self._channel, self._connection)
            self._connection, self._channel = connection, channel
        await close_quietly(*previous)

        logger.info("Connected to RabbitMQ")
        return True

    async def check_health(self) -> bool:
        """Reachability check on a short-lived connection of its own."""

        try:
            connection = await self._open()
            await connection.close()
        except asyncio.TimeoutError:
            logger.error(f"RabbitMQ check failed: timed out after {self.connect_timeout_seconds}s")
            return False
        except Exception as e:
            logger.error(f"RabbitMQ check failed: {e}")
            return False
        logger.info("RabbitMQ is healthy")
        return True

    @asynccontextmanager
    async def channel(self) -> AsyncIterator[AbstractChannel]:
        """Exclusive use of the long-lived channel.

        Reconnects first when the connection was never opened or has dropped.
        """

        async with self._lock:
            if not self.is_connected:
                await self._reconnect_locked()
            assert self._channel is not None
            yield self._channel

    async def _reconnect_locked(self) -> None:
        stale = (self._channel, self._connection)
        self._channel = None
        self._connection = None
        await close_quietly(*stale)

        logger.info("Reconnecting to RabbitMQ...")
        try:
            self._connection, self._channel = await self._open_verified()
        except asyncio.TimeoutError as e:
            raise BrokerUnavailable(
                f"RabbitMQ connection is not open: timed out after {self.connect_timeout_seconds}s"
            ) from e
        except Exception as e:
            raise BrokerUnavailable(f"RabbitMQ connection is not open: {e}") from e
        logger.info("Connected to RabbitMQ")

    async def close(self) -> None:
        async with self._lock:
            channel, connection = self._channel, self._connection
            self._channel = None
            self._connection = None
        if channel is None and connection is None:
            return
        await close_quietly(channel, connection)
        logger.info("RabbitMQ connection closed")
