"""Per-message resolution shared by the relay jobs."""

from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Dict

from relay_shared.logging import get_logger
from relay_shared.models import Message
from relay_shared.queue import Acknowledger, PendingMessageTable

logger = get_logger(__name__)

MessageHandler = Callable[[Message], Awaitable[None]]


@dataclass
class BatchResult:
    """Outcome counts for one batch."""

    retrieved: int = 0
    succeeded: int = 0
    failed: int = 0

    def record(self, ok: bool) -> None:
        if ok:
            self.succeeded += 1
        else:
            self.failed += 1

    def merge(self, other: "BatchResult") -> None:
        self.retrieved += other.retrieved
        self.succeeded += other.succeeded
        self.failed += other.failed

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


async def resolve_message(
    message: Message,
    pending: PendingMessageTable,
    acknowledger: Acknowledger,
    handler: MessageHandler,
) -> bool:
    """
    Run ``handler`` for a retrieved message, then settle its delivery.

    The delivery is acknowledged when the handler succeeds and rejected
    without requeue (dead-lettered) when it raises. Either way the broker
    call happens strictly after the handler has finished.

    Args:
        message: Retrieved message
        pending: Pending table of the batch the message belongs to
        acknowledger: Acknowledger used to settle the delivery
        handler: Work to do for the message (publish, index...)

    Returns:
        bool: True if the handler succeeded and the ack went through
    """
    try:
        await handler(message)
    except Exception as e:
        logger.error(f"Failed to process message {message.id}: {e}", message_id=message.id)
        await acknowledger.reject(pending, message.id, requeue=False)
        return False

    return await acknowledger.acknowledge(pending, message.id)
