"""RabbitMQ queue management for the relay."""

from .acknowledger import Acknowledger
from .client import BrokerConnection
from .pending import PendingMessageTable
from .publisher import MessagePublisher
from .retriever import BatchRetriever, RetrievedBatch
from .topology import setup_queue_topology

__all__ = [
    "Acknowledger",
    "BatchRetriever",
    "BrokerConnection",
    "MessagePublisher",
    "PendingMessageTable",
    "RetrievedBatch",
    "setup_queue_topology",
]
