"""Bounded pull-based retrieval of messages from a queue."""

from dataclasses import dataclass, field
from typing import Iterator, List

from aio_pika.abc import AbstractIncomingMessage

from relay_shared.errors import DecodeError, DuplicateDeliveryError
from relay_shared.logging import get_logger
from relay_shared.models import Message, synthetic_message_id
from .client import BrokerConnection
from .pending import PendingMessageTable

logger = get_logger(__name__)


@dataclass
class RetrievedBatch:
    """Messages pulled in one retrieval call and the table tracking them."""

    queue_name: str
    messages: List[Message] = field(default_factory=list)
    pending: PendingMessageTable = field(default_factory=PendingMessageTable)
    exhausted: bool = False

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)


class BatchRetriever:
    """Pulls bounded batches with ``basic.get`` rather than a standing subscription."""

    def __init__(self, broker: BrokerConnection):
        self.broker = broker

    async def retrieve(self, queue_name: str, max_count: int) -> RetrievedBatch:
        """
        Pull up to ``max_count`` messages from ``queue_name``.

        Stops early when the queue is empty. A delivery that cannot be decoded
        is rejected without requeue and ends the batch; the messages gathered
        before it are returned. A delivery whose id is already in the batch is
        rejected without requeue, so the broker dead-letters it instead of
        handing it straight back, and does not count towards ``max_count``.

        Args:
            queue_name: Queue to pull from
            max_count: Maximum number of messages to return

        Returns:
            RetrievedBatch: messages in retrieval order plus their pending table

        Raises:
            ChannelNotReadyError: If the consume channel is not initialized
        """
        if max_count < 0:
            raise ValueError("max_count must be >= 0")

        channel = self.broker.get_consume_channel()
        queue = await channel.get_queue(queue_name, ensure=False)
        batch = RetrievedBatch(queue_name=queue_name)

        index = 0
        while len(batch) < max_count:
            try:
                delivery = await queue.get(no_ack=False, fail=False)
            except Exception as e:
                logger.error("Failed to get message from queue", queue=queue_name, error=str(e))
                break

            if delivery is None:
                batch.exhausted = True
                logger.debug(f"Retrieved {len(batch)} messages, queue {queue_name} is empty")
                break

            fallback_id = synthetic_message_id(index)
            index += 1
            try:
                message = Message.from_body(delivery.body, fallback_id=fallback_id)
            except DecodeError as e:
                logger.error(
                    "Undecodable message, rejecting and ending batch",
                    queue=queue_name,
                    retrieved=len(batch),
                    error=str(e),
                )
                await self._settle(delivery, requeue=False)
                break

            try:
                batch.pending.register(message.id, delivery, queue_name)
            except DuplicateDeliveryError:
                logger.warning(
                    "Duplicate message id within batch, rejecting delivery",
                    queue=queue_name,
                    message_id=message.id,
                )
                await self._settle(delivery, requeue=False)
                continue

            batch.messages.append(message)

        if batch.messages:
            logger.info(f"Retrieved {len(batch)} messages from {queue_name}", exhausted=batch.exhausted)
        return batch

    async def _settle(self, delivery: AbstractIncomingMessage, requeue: bool) -> None:
        try:
            await delivery.nack(requeue=requeue)
        except Exception as e:
            logger.error("Failed to nack delivery", requeue=requeue, error=str(e))
