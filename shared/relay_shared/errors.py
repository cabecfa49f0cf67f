"""Exception hierarchy for the relay."""


class RelayError(Exception):
    """Base class for relay errors."""


class BrokerConnectionError(RelayError, ConnectionError):
    """The broker transport is unreachable or was closed."""


class ChannelNotReadyError(RelayError):
    """A broker channel is not initialized (disconnected or reconnecting)."""

    def __init__(self, role: str):
        super().__init__(f"{role} channel not initialized")
        self.role = role


class DecodeError(RelayError):
    """A message envelope could not be decoded."""


class DuplicateDeliveryError(RelayError):
    """A message id is already pending in the current batch."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} is already pending")
        self.message_id = message_id


class IndexingError(RelayError):
    """The search indexer failed to store a document."""


class PublishError(RelayError):
    """A message could not be published to the broker."""


class AcknowledgeError(RelayError):
    """The broker refused an ack or nack."""
