"""In-flight delivery tracking for one retrieval batch."""

from typing import Dict, Iterator, List, Optional

from aio_pika.abc import AbstractIncomingMessage

from relay_shared.errors import DuplicateDeliveryError
from relay_shared.models import PendingDelivery


class PendingMessageTable:
    """
    Maps message ids to the broker deliveries awaiting ack or reject.

    One table belongs to one retrieval batch. It is handed back by
    :meth:`BatchRetriever.retrieve` and passed to every
    :class:`Acknowledger` call, so an entry lives exactly as long as its
    delivery is unresolved.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, PendingDelivery] = {}

    def register(
        self,
        message_id: str,
        delivery: AbstractIncomingMessage,
        source_queue: str,
    ) -> PendingDelivery:
        """
        Track a retrieved delivery.

        Raises:
            DuplicateDeliveryError: If the id is already pending
        """
        if message_id in self._entries:
            raise DuplicateDeliveryError(message_id)
        entry = PendingDelivery(message_id=message_id, delivery=delivery, source_queue=source_queue)
        self._entries[message_id] = entry
        return entry

    def get(self, message_id: str) -> Optional[PendingDelivery]:
        return self._entries.get(message_id)

    def pop(self, message_id: str) -> Optional[PendingDelivery]:
        return self._entries.pop(message_id, None)

    def ids(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __repr__(self) -> str:
        return f"PendingMessageTable(pending={len(self._entries)})"
