"""Shared Pydantic models for the relay."""

import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from aio_pika.abc import AbstractIncomingMessage
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DecodeError


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def synthetic_message_id(index: int = 0) -> str:
    """Build a timestamp-derived id for messages that arrive without one."""
    return f"msg-{now_ms()}-{index}"


class ConnectionState(str, Enum):
    """Broker connection lifecycle state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Message(BaseModel):
    """Relay message as carried on the wire.

    Identity is the ``id``: two messages with the same id compare equal
    whatever their content. Instances are frozen; use :meth:`mark_processed`
    to derive a stamped copy.
    """

    id: str
    content: Any = None
    timestamp: int = Field(default_factory=now_ms)
    update_timestamp: int = Field(default_factory=now_ms, alias="updateTimestamp")
    processed: Optional[bool] = None
    processed_at: Optional[int] = Field(default=None, alias="processedAt")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="allow",
    )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def create(cls, content: Any, message_id: Optional[str] = None) -> "Message":
        """Create a fresh message for an inbound payload."""
        stamp = now_ms()
        return cls(
            id=message_id or str(uuid.uuid4()),
            content=content,
            timestamp=stamp,
            update_timestamp=stamp,
        )

    @classmethod
    def from_wire(cls, payload: Dict[str, Any], fallback_id: Optional[str] = None) -> "Message":
        """
        Build a message from a decoded wire envelope.

        Args:
            payload: Decoded JSON object
            fallback_id: Id to use when the envelope carries none

        Returns:
            Message

        Raises:
            DecodeError: If the envelope does not describe a valid message
        """
        data = dict(payload)
        if not data.get("id"):
            data["id"] = fallback_id or synthetic_message_id()
        else:
            data["id"] = str(data["id"])
        for key in ("timestamp", "updateTimestamp"):
            if data.get(key) is None:
                data.pop(key, None)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Invalid message envelope: {e}") from e

    @classmethod
    def from_body(cls, body: bytes, fallback_id: Optional[str] = None) -> "Message":
        """Decode a raw AMQP body into a message."""
        return cls.from_wire(decode_body(body), fallback_id=fallback_id)

    def mark_processed(self) -> "Message":
        """Return a copy stamped as processed by the relay."""
        stamp = now_ms()
        return self.model_copy(
            update={"processed": True, "processed_at": stamp, "update_timestamp": stamp}
        )

    def to_wire(self) -> Dict[str, Any]:
        """Wire representation (camelCase keys, unset markers omitted)."""
        data = self.model_dump(by_alias=True)
        for key in ("processed", "processedAt"):
            if data.get(key) is None:
                data.pop(key, None)
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_wire(), separators=(",", ":")).encode("utf-8")


def decode_body(body: bytes) -> Dict[str, Any]:
    """
    Decode an AMQP body into a JSON object.

    Raises:
        DecodeError: If the body is not UTF-8 JSON or not an object
    """
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Malformed message body: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError(f"Message body must be a JSON object, got {type(payload).__name__}")
    return payload


class DeadLetterBinding(BaseModel):
    """Dead-letter routing for a queue."""

    exchange: str = "dead.letter.exchange"
    routing_key: str = "dead.letter.routing.key"
    queue: str = "dead_letter_queue"

    model_config = ConfigDict(frozen=True)


class QueueDescriptor(BaseModel):
    """Queue declaration settings, fixed at startup."""

    name: str = Field(min_length=1)
    durable: bool = True
    dead_letter: Optional[DeadLetterBinding] = None

    model_config = ConfigDict(frozen=True)

    def declare_arguments(self) -> Optional[Dict[str, Any]]:
        """Queue arguments for ``declare_queue``."""
        if self.dead_letter is None:
            return None
        return {
            "x-dead-letter-exchange": self.dead_letter.exchange,
            "x-dead-letter-routing-key": self.dead_letter.routing_key,
        }


class QueueTopology(BaseModel):
    """The queues the relay moves messages between."""

    consume: QueueDescriptor
    publish: QueueDescriptor

    model_config = ConfigDict(frozen=True)

    @property
    def dead_letter(self) -> Optional[DeadLetterBinding]:
        return self.consume.dead_letter

    def queue_names(self) -> List[str]:
        names = [self.consume.name, self.publish.name]
        if self.dead_letter is not None:
            names.append(self.dead_letter.queue)
        return names


@dataclass(frozen=True)
class PendingDelivery:
    """Correlates a retrieved message with its broker delivery."""

    message_id: str
    delivery: AbstractIncomingMessage
    source_queue: str


class DeadLetterMeta(BaseModel):
    """Audit metadata attached to dead-lettered messages."""

    rejected_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="rejectedAt"
    )
    original_queue: str = Field(alias="originalQueue")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> Dict[str, str]:
        stamp = self.rejected_at.astimezone(timezone.utc).isoformat(timespec="milliseconds")
        return {
            "rejectedAt": stamp.replace("+00:00", "Z"),
            "originalQueue": self.original_queue,
        }


class DeadLetterEnvelope(BaseModel):
    """Original payload plus ``_meta``, written to the dead-letter queue."""

    payload: Dict[str, Any]
    meta: DeadLetterMeta

    model_config = ConfigDict(frozen=True)

    @classmethod
    def wrap(cls, payload: Dict[str, Any], original_queue: str) -> "DeadLetterEnvelope":
        return cls(payload=payload, meta=DeadLetterMeta(original_queue=original_queue))

    def to_wire(self) -> Dict[str, Any]:
        return {**self.payload, "_meta": self.meta.to_wire()}

    def to_json(self) -> bytes:
        return json.dumps(self.to_wire(), separators=(",", ":")).encode("utf-8")
