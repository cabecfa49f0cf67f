"""RabbitMQ topology setup for the relay."""

from typing import Any, Dict, Optional

from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel

from relay_shared.logging import get_logger
from relay_shared.models import QueueTopology

logger = get_logger(__name__)


async def setup_queue_topology(
    consume_channel: AbstractChannel,
    publish_channel: AbstractChannel,
    topology: QueueTopology,
    dead_letter_channel: Optional[AbstractChannel] = None,
) -> Dict[str, Any]:
    """
    Declare the relay's exchanges, queues and bindings.

    This function is idempotent and is re-run on every (re)connection.

    Args:
        consume_channel: Channel used for retrieval and acknowledgment
        publish_channel: Channel used for publishing
        topology: Queue descriptors
        dead_letter_channel: Channel for dead-letter declarations; required
            when the consume queue has a dead-letter binding

    Returns:
        Dict containing declared exchanges and queues
    """
    exchanges: Dict[str, Any] = {}
    queues: Dict[str, Any] = {}

    binding = topology.dead_letter
    if binding is not None:
        if dead_letter_channel is None:
            raise ValueError("dead_letter_channel is required when a dead letter queue is configured")

        # Dead letter exchange and queue must exist before the consume queue references them
        dlx = await dead_letter_channel.declare_exchange(
            name=binding.exchange,
            type=ExchangeType.DIRECT,
            durable=True,
        )
        dlq = await dead_letter_channel.declare_queue(name=binding.queue, durable=True)
        await dlq.bind(dlx, routing_key=binding.routing_key)
        exchanges["dead_letter"] = dlx
        queues["dead_letter"] = dlq
        logger.info(
            "Declared dead letter queue",
            queue=binding.queue,
            exchange=binding.exchange,
            routing_key=binding.routing_key,
        )

    consume = topology.consume
    queues["consume"] = await consume_channel.declare_queue(
        name=consume.name,
        durable=consume.durable,
        arguments=consume.declare_arguments(),
    )

    publish = topology.publish
    queues["publish"] = await publish_channel.declare_queue(
        name=publish.name,
        durable=publish.durable,
        arguments=publish.declare_arguments(),
    )

    logger.info(
        "RabbitMQ topology declared",
        consume_queue=consume.name,
        publish_queue=publish.name,
        dead_lettering=binding is not None,
    )

    return {"exchanges": exchanges, "queues": queues}
