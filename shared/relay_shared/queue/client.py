"""RabbitMQ connection management for the relay."""

import asyncio
from typing import Any, List, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection
from aio_pika.exceptions import AMQPConnectionError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_fixed

from relay_shared.errors import BrokerConnectionError, ChannelNotReadyError
from relay_shared.logging import get_logger, mask_url
from relay_shared.models import ConnectionState, QueueTopology
from .topology import setup_queue_topology

logger = get_logger(__name__)

# Failures that mean "broker unreachable", as opposed to a rejected declaration
TRANSPORT_ERRORS = (AMQPConnectionError, OSError, asyncio.TimeoutError)


class BrokerConnection:
    """
    Owns the AMQP connection and the relay's three channels.

    Channels:
        consume: basic.get pulls and their ack/nack, carries the prefetch limit
        publish: publishing to the consume and publish queues
        dead_letter: dead-letter envelopes (only when a dead letter queue is configured)

    The connection moves ``DISCONNECTED -> CONNECTING -> CONNECTED``. A
    transport error or close event moves it to ``RECONNECTING``, which retries
    at a fixed delay until it succeeds or :meth:`close` is called.
    """

    def __init__(
        self,
        url: str,
        topology: QueueTopology,
        prefetch_count: int = 10,
        reconnect_delay: float = 5.0,
        connect_timeout: Optional[float] = 10.0,
        connection_name: str = "mq-search-relay",
    ):
        """
        Initialize the broker connection.

        Args:
            url: RabbitMQ connection URL
            topology: Queues to declare on every connection
            prefetch_count: Prefetch limit applied to the consume channel
            reconnect_delay: Fixed delay in seconds between reconnection attempts
            connect_timeout: Transport connect timeout in seconds
            connection_name: Client-provided connection name shown in the management UI
        """
        self.url = url
        self.topology = topology
        self.prefetch_count = prefetch_count
        self.reconnect_delay = reconnect_delay
        self.connect_timeout = connect_timeout
        self.connection_name = connection_name

        self.state = ConnectionState.DISCONNECTED
        self.connection: Optional[AbstractConnection] = None
        self.consume_channel: Optional[AbstractChannel] = None
        self.publish_channel: Optional[AbstractChannel] = None
        self.dead_letter_channel: Optional[AbstractChannel] = None

        self._closed = False
        self._reconnect_task: Optional[asyncio.Task] = None
        # Serializes _open/_release so overlapping connects never orphan a connection
        self._open_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return (
            self.state == ConnectionState.CONNECTED
            and self.connection is not None
            and not self.connection.is_closed
        )

    @property
    def dead_letter_queue(self) -> Optional[str]:
        binding = self.topology.dead_letter
        return binding.queue if binding is not None else None

    async def connect(self) -> None:
        """
        Connect to RabbitMQ, open the channels and declare the topology.

        An existing connection is released first, so this doubles as a
        reinitialization call.

        Raises:
            BrokerConnectionError: If the broker is unreachable. Reconnection
                is scheduled in the background before the error is raised.
        """
        self._closed = False
        try:
            async with self._open_lock:
                await self._open()
        except BrokerConnectionError as e:
            logger.error("Failed to connect to RabbitMQ", error=str(e))
            self._schedule_reconnect()
            raise

        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def reconnect(self) -> None:
        """Reconnect after the fixed delay, retrying indefinitely until connected or closed."""
        if self._closed:
            return

        self.state = ConnectionState.RECONNECTING
        logger.info("Reconnecting to RabbitMQ", delay_seconds=self.reconnect_delay)
        await asyncio.sleep(self.reconnect_delay)

        async for attempt in AsyncRetrying(
            wait=wait_fixed(self.reconnect_delay),
            retry=retry_if_exception_type(BrokerConnectionError),
            before_sleep=self._before_retry,
            reraise=True,
        ):
            with attempt:
                async with self._open_lock:
                    if self._closed:
                        return
                    await self._open()

        logger.info("Reconnected to RabbitMQ")

    async def check_health(self) -> bool:
        """
        Check that the consume and publish queues are reachable.

        Returns:
            bool: True if both passive declarations succeed; never raises
        """
        try:
            if self.connection is None or self.connection.is_closed:
                return False
            consume_channel = self.get_consume_channel()
            publish_channel = self.get_publish_channel()
            await consume_channel.declare_queue(self.topology.consume.name, passive=True)
            await publish_channel.declare_queue(self.topology.publish.name, passive=True)
            return True
        except Exception as e:
            logger.error("RabbitMQ health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close all channels, then the connection. Each step is best effort."""
        self._closed = True

        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Reconnect task ended with error", error=str(e))

        async with self._open_lock:
            await self._release()
        self.state = ConnectionState.CLOSED
        logger.info("Closed RabbitMQ connection")

    def get_consume_channel(self) -> AbstractChannel:
        return self._require(self.consume_channel, "consume")

    def get_publish_channel(self) -> AbstractChannel:
        return self._require(self.publish_channel, "publish")

    def get_dead_letter_channel(self) -> Optional[AbstractChannel]:
        """Dead letter channel, or None when dead lettering is not configured."""
        if self.topology.dead_letter is None:
            return None
        return self._require(self.dead_letter_channel, "dead letter")

    def _require(self, channel: Optional[AbstractChannel], role: str) -> AbstractChannel:
        if channel is None or channel.is_closed:
            raise ChannelNotReadyError(role)
        return channel

    async def _open(self) -> None:
        await self._release()
        self.state = ConnectionState.CONNECTING
        logger.info("Connecting to RabbitMQ", url=mask_url(self.url))

        try:
            connection = await aio_pika.connect(
                self.url,
                timeout=self.connect_timeout,
                client_properties={"connection_name": self.connection_name},
            )
        except TRANSPORT_ERRORS as e:
            self.state = ConnectionState.DISCONNECTED
            raise BrokerConnectionError(f"RabbitMQ unreachable at {mask_url(self.url)}: {e}") from e

        try:
            consume_channel = await connection.channel()
            publish_channel = await connection.channel()
            dead_letter_channel = None
            if self.topology.dead_letter is not None:
                dead_letter_channel = await connection.channel()

            await setup_queue_topology(
                consume_channel,
                publish_channel,
                self.topology,
                dead_letter_channel=dead_letter_channel,
            )
            await consume_channel.set_qos(prefetch_count=self.prefetch_count)
        except TRANSPORT_ERRORS as e:
            await self._close_quietly(connection)
            self.state = ConnectionState.DISCONNECTED
            raise BrokerConnectionError(f"RabbitMQ connection lost during setup: {e}") from e
        except Exception:
            await self._close_quietly(connection)
            self.state = ConnectionState.DISCONNECTED
            raise

        self.connection = connection
        self.consume_channel = consume_channel
        self.publish_channel = publish_channel
        self.dead_letter_channel = dead_letter_channel
        connection.close_callbacks.add(self._on_connection_close)

        self.state = ConnectionState.CONNECTED
        logger.info(
            "Successfully connected to RabbitMQ",
            prefetch_count=self.prefetch_count,
            queues=self.topology.queue_names(),
        )

    def _on_connection_close(self, sender: Any, exc: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        logger.warning("RabbitMQ connection closed unexpectedly", error=str(exc) if exc else None)
        self._drop_channels()
        self.connection = None
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self.state = ConnectionState.RECONNECTING
        task = asyncio.get_running_loop().create_task(self.reconnect())
        task.add_done_callback(self._on_reconnect_done)
        self._reconnect_task = task

    def _on_reconnect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.state = ConnectionState.DISCONNECTED
            logger.error("Reconnection stopped by a non-transport error", error=str(exc), exc_info=exc)

    def _before_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.state = ConnectionState.RECONNECTING
        logger.error(
            "Reconnection attempt failed",
            attempt=retry_state.attempt_number,
            retry_in_seconds=self.reconnect_delay,
            error=str(exc),
        )

    def _drop_channels(self) -> None:
        self.consume_channel = None
        self.publish_channel = None
        self.dead_letter_channel = None

    async def _release(self) -> None:
        connection = self.connection
        channels: List[Optional[AbstractChannel]] = [
            self.dead_letter_channel,
            self.publish_channel,
            self.consume_channel,
        ]
        self._drop_channels()
        self.connection = None

        if connection is not None:
            # Deliberate close must not look like a dropped connection
            connection.close_callbacks.discard(self._on_connection_close)

        for channel in channels:
            if channel is None:
                continue
            try:
                if not channel.is_closed:
                    await channel.close()
            except Exception as e:
                logger.warning("Error closing RabbitMQ channel", error=str(e))

        if connection is not None:
            await self._close_quietly(connection)

    async def _close_quietly(self, connection: AbstractConnection) -> None:
        try:
            if not connection.is_closed:
                await connection.close()
        except Exception as e:
            logger.warning("Error closing RabbitMQ connection", error=str(e))

    async def __aenter__(self) -> "BrokerConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
