"""Resolution of pending deliveries: ack, requeue or dead-letter."""

from aio_pika import DeliveryMode, Message as AmqpMessage

from relay_shared.errors import AcknowledgeError, ChannelNotReadyError, DecodeError
from relay_shared.logging import get_logger
from relay_shared.models import DeadLetterEnvelope, PendingDelivery, decode_body
from .client import BrokerConnection
from .pending import PendingMessageTable

logger = get_logger(__name__)


class Acknowledger:
    """
    Settles deliveries tracked in a :class:`PendingMessageTable`.

    Both operations return a bool and never raise, so a caller can keep
    working through a batch after one failure. On ``False`` the entry stays
    in the table: the message is still pending on the broker side and will
    be redelivered once its channel is gone.
    """

    def __init__(self, broker: BrokerConnection):
        self.broker = broker

    async def acknowledge(self, pending: PendingMessageTable, message_id: str) -> bool:
        """
        Positively acknowledge a pending message.

        Args:
            pending: Table of the batch the message was retrieved in
            message_id: Message id

        Returns:
            bool: True if acknowledged; False for unknown ids or broker errors
        """
        entry = pending.get(message_id)
        if entry is None:
            logger.warning("Message not found for acknowledgment", message_id=message_id)
            return False

        try:
            await self._ack(entry)
        except AcknowledgeError as e:
            logger.error("Failed to acknowledge message", message_id=message_id, error=str(e))
            return False

        pending.pop(message_id)
        logger.debug("Message acknowledged", message_id=message_id, queue=entry.source_queue)
        return True

    async def reject(
        self,
        pending: PendingMessageTable,
        message_id: str,
        requeue: bool = False,
    ) -> bool:
        """
        Negatively acknowledge a pending message.

        Without requeue, and when a dead letter queue is configured, a copy
        of the original payload with ``_meta`` is published to the dead
        letter queue before the nack.

        Args:
            pending: Table of the batch the message was retrieved in
            message_id: Message id
            requeue: Return the message to its queue instead of dead-lettering it

        Returns:
            bool: True if rejected; False for unknown ids or if any step failed
        """
        entry = pending.get(message_id)
        if entry is None:
            logger.warning("Message not found for rejection", message_id=message_id)
            return False

        try:
            if not requeue:
                await self._dead_letter(entry)
            await self._nack(entry, requeue=requeue)
        except (AcknowledgeError, ChannelNotReadyError, DecodeError) as e:
            logger.error(
                "Failed to reject message",
                message_id=message_id,
                requeue=requeue,
                error=str(e),
            )
            return False

        pending.pop(message_id)
        logger.info(
            "Message rejected",
            message_id=message_id,
            queue=entry.source_queue,
            requeue=requeue,
        )
        return True

    async def _ack(self, entry: PendingDelivery) -> None:
        try:
            await entry.delivery.ack()
        except Exception as e:
            raise AcknowledgeError(str(e)) from e

    async def _nack(self, entry: PendingDelivery, requeue: bool) -> None:
        try:
            await entry.delivery.nack(requeue=requeue)
        except Exception as e:
            raise AcknowledgeError(str(e)) from e

    async def _dead_letter(self, entry: PendingDelivery) -> None:
        channel = self.broker.get_dead_letter_channel()
        if channel is None:
            return

        envelope = DeadLetterEnvelope.wrap(decode_body(entry.delivery.body), entry.source_queue)
        try:
            await channel.default_exchange.publish(
                AmqpMessage(
                    body=envelope.to_json(),
                    content_type="application/json",
                    delivery_mode=DeliveryMode.PERSISTENT,
                    message_id=entry.message_id,
                ),
                routing_key=self.broker.dead_letter_queue,
            )
        except Exception as e:
            raise AcknowledgeError(f"dead letter publish failed: {e}") from e

        logger.info(
            "Message dead-lettered",
            message_id=entry.message_id,
            dead_letter_queue=self.broker.dead_letter_queue,
            original_queue=entry.source_queue,
        )
