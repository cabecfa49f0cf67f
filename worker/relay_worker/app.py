"""Composition root wiring the broker, indexer and scheduler together."""

from typing import Optional

from relay_shared.errors import BrokerConnectionError
from relay_shared.indexer import Indexer, SearchIndexer
from relay_shared.logging import get_logger
from relay_shared.queue import BrokerConnection
from .config import Settings
from .scheduler import RelayScheduler

logger = get_logger(__name__)


class RelayApplication:
    """Starts and stops every long-lived component of the relay worker."""

    def __init__(
        self,
        settings: Settings,
        broker: Optional[BrokerConnection] = None,
        indexer: Optional[Indexer] = None,
        continuous_enabled: Optional[bool] = None,
    ):
        """
        Initialize the application.

        Args:
            settings: Worker settings
            broker: Broker connection; built from settings when omitted
            indexer: Search indexer; built from settings when omitted
            continuous_enabled: Override for ``settings.continuous_enabled``
        """
        self.settings = settings
        self.broker = broker or BrokerConnection(
            settings.rabbitmq_url,
            settings.topology(),
            prefetch_count=settings.rabbitmq_prefetch,
            reconnect_delay=settings.rabbitmq_reconnect_delay,
        )
        self.indexer = indexer or SearchIndexer(
            settings.elasticsearch_node,
            settings.elasticsearch_index,
            username=settings.elasticsearch_username,
            password=settings.elasticsearch_password,
            request_timeout=settings.elasticsearch_timeout,
        )
        self.continuous_enabled = (
            settings.continuous_enabled if continuous_enabled is None else continuous_enabled
        )

        self.relay = RelayScheduler(
            self.broker,
            self.indexer,
            consume_queue=settings.rabbitmq_queue_consume,
            publish_queue=settings.rabbitmq_queue_publish,
            continuous_batch_size=settings.continuous_batch_size,
            continuous_sub_batch_size=settings.continuous_sub_batch_size,
            continuous_idle_interval=settings.continuous_idle_interval,
            continuous_error_interval=settings.continuous_error_interval,
        )
        self.started = False

    async def start(self) -> None:
        """
        Start the relay.

        The indexer must initialize; an unreachable broker is logged and left
        to reconnect in the background.

        Raises:
            IndexingError: If the search index cannot be initialized
            Exception: Any non-transport broker setup failure
        """
        await self.indexer.initialize()

        try:
            await self.broker.connect()
        except BrokerConnectionError as e:
            logger.warning("Broker unavailable at startup, reconnecting in background", error=str(e))

        if self.continuous_enabled:
            self.relay.start_continuous_processing()

        self.relay.start_transfer_job(
            self.settings.transfer_schedule,
            batch_size=self.settings.transfer_batch_size,
        )
        self.relay.start_indexing_job(
            self.settings.indexing_schedule,
            batch_size=self.settings.indexing_batch_size,
        )
        self.relay.start_heartbeat_job(self.settings.heartbeat_schedule)
        self.relay.start()

        self.started = True
        logger.info("Relay started", continuous=self.continuous_enabled)

    async def stop(self) -> None:
        """Stop jobs and the continuous loop, then close the broker and indexer."""
        try:
            await self.relay.shutdown()
        except Exception as e:
            logger.error("Error stopping scheduler", error=str(e))

        await self.broker.close()
        await self.indexer.close()
        self.started = False
        logger.info("Relay stopped")
