"""Message publisher for the relay."""

from aio_pika import DeliveryMode, Message as AmqpMessage

from relay_shared.errors import PublishError
from relay_shared.logging import get_logger
from relay_shared.models import Message
from .client import BrokerConnection

logger = get_logger(__name__)


class MessagePublisher:
    """Publishes relay messages to a named queue through the default exchange."""

    def __init__(self, broker: BrokerConnection):
        """
        Initialize message publisher.

        Args:
            broker: Broker connection owning the publish channel
        """
        self.broker = broker

    async def publish(self, message: Message, queue_name: str) -> None:
        """
        Publish a message to a queue.

        Args:
            message: Message to publish
            queue_name: Target queue

        Raises:
            PublishError: If the publish channel is unavailable or publishing fails
        """
        if not queue_name:
            raise PublishError("Target queue name is required")

        try:
            channel = self.broker.get_publish_channel()
            await channel.default_exchange.publish(
                AmqpMessage(
                    body=message.to_json(),
                    content_type="application/json",
                    delivery_mode=DeliveryMode.PERSISTENT,
                    message_id=message.id,
                ),
                routing_key=queue_name,
            )
        except Exception as e:
            logger.error(f"Failed to publish message {message.id} to {queue_name}: {e}")
            raise PublishError(f"Failed to publish message {message.id}: {e}") from e

        logger.debug("Published message", message_id=message.id, queue=queue_name)
