"""
Relay scheduler.

Drives the periodic work of the relay on top of APScheduler:

- transfer job: consume queue -> publish queue, unchanged
- indexing job: consume queue -> search index -> publish queue, stamped as processed
- heartbeat job: broker and indexer health, reinitializing whichever is down

plus the continuous transfer loop, which runs as its own task.
"""

from typing import Any, Dict, List, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from relay_shared.indexer import Indexer
from relay_shared.logging import bind_context, clear_context, get_logger
from relay_shared.models import Message
from relay_shared.queue import Acknowledger, BatchRetriever, BrokerConnection, MessagePublisher
from .batch import BatchResult, MessageHandler, resolve_message
from .continuous import ContinuousTransferLoop

logger = get_logger(__name__)

TRANSFER_JOB_ID = "queue_transfer"
INDEXING_JOB_ID = "queue_indexing"
HEARTBEAT_JOB_ID = "heartbeat"


class RelayScheduler:
    """
    Scheduled and continuous queue processing.

    Every job runs with ``max_instances=1`` and ``coalesce=True``: a batch is
    fully acknowledged or rejected before the same job retrieves again.

    Usage:
        relay = RelayScheduler(broker, indexer, consume_queue="in", publish_queue="out")
        relay.start_transfer_job("*/1 * * * *")
        relay.start()
        ...
        relay.stop_all_jobs()
        await relay.shutdown()
    """

    def __init__(
        self,
        broker: BrokerConnection,
        indexer: Indexer,
        consume_queue: str,
        publish_queue: str,
        scheduler: Optional[AsyncIOScheduler] = None,
        timezone: str = "UTC",
        continuous_batch_size: int = 100,
        continuous_sub_batch_size: int = 20,
        continuous_idle_interval: float = 5.0,
        continuous_error_interval: float = 3.0,
    ):
        """
        Initialize the relay scheduler.

        Args:
            broker: Broker connection shared by all jobs
            indexer: Search indexer used by the indexing and heartbeat jobs
            consume_queue: Queue the periodic jobs pull from
            publish_queue: Queue the periodic jobs publish to
            scheduler: APScheduler instance to register jobs on
            timezone: Timezone for crontab schedules
            continuous_batch_size: Messages pulled per continuous loop iteration
            continuous_sub_batch_size: Concurrent publishes per sub-batch
            continuous_idle_interval: Wait after an empty pull in seconds
            continuous_error_interval: Wait after a failed iteration in seconds
        """
        self.broker = broker
        self.indexer = indexer
        self.consume_queue = consume_queue
        self.publish_queue = publish_queue

        self.retriever = BatchRetriever(broker)
        self.publisher = MessagePublisher(broker)
        self.acknowledger = Acknowledger(broker)

        # The continuous loop runs the opposite direction of the periodic transfer
        self.continuous_loop = ContinuousTransferLoop(
            retriever=self.retriever,
            publisher=self.publisher,
            acknowledger=self.acknowledger,
            source_queue=publish_queue,
            target_queue=consume_queue,
            batch_size=continuous_batch_size,
            sub_batch_size=continuous_sub_batch_size,
            idle_interval=continuous_idle_interval,
            error_interval=continuous_error_interval,
        )
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self.jobs: List[Job] = []

    def start(self) -> None:
        """Start the APScheduler event loop integration."""
        if self.scheduler.running:
            logger.warning("Scheduler already started")
            return
        self.scheduler.start()
        for job in self.scheduler.get_jobs():
            logger.info(f"Job '{job.name}' next run: {job.next_run_time}")

    async def shutdown(self) -> None:
        """Remove every job and stop the continuous loop, then the scheduler."""
        self.stop_all_jobs()
        await self.stop_continuous_processing()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Relay scheduler stopped")

    def start_transfer_job(self, schedule: str = "*/1 * * * *", batch_size: int = 20) -> Job:
        """Schedule :meth:`transfer_queue_messages`."""
        return self._add_job(
            self.transfer_queue_messages,
            schedule,
            job_id=TRANSFER_JOB_ID,
            name="Queue transfer",
            kwargs={"batch_size": batch_size},
        )

    def start_indexing_job(self, schedule: str = "*/1 * * * *", batch_size: int = 10) -> Job:
        """Schedule :meth:`process_queue_to_index`."""
        return self._add_job(
            self.process_queue_to_index,
            schedule,
            job_id=INDEXING_JOB_ID,
            name="Queue indexing",
            kwargs={"batch_size": batch_size},
        )

    def start_heartbeat_job(self, schedule: str = "*/5 * * * *") -> Job:
        """Schedule :meth:`run_heartbeat`."""
        return self._add_job(
            self.run_heartbeat,
            schedule,
            job_id=HEARTBEAT_JOB_ID,
            name="Heartbeat",
        )

    def stop_all_jobs(self) -> None:
        """Remove every scheduled job. The continuous loop is not affected."""
        for job in self.jobs:
            try:
                job.remove()
            except JobLookupError:
                logger.warning(f"Job {job.id} was already removed")
        self.jobs = []
        logger.info("All scheduled jobs stopped")

    def start_continuous_processing(self) -> None:
        self.continuous_loop.start()

    async def stop_continuous_processing(self) -> None:
        await self.continuous_loop.stop()

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Scheduled jobs and their next run times."""
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]

    async def transfer_queue_messages(self, batch_size: int = 20) -> BatchResult:
        """
        Move a batch from the consume queue to the publish queue unchanged.

        Args:
            batch_size: Maximum messages to retrieve

        Returns:
            BatchResult: outcome counts; empty if the broker is unavailable
        """

        async def forward(message: Message) -> None:
            await self.publisher.publish(message, self.publish_queue)

        return await self._run_batch("transfer", batch_size, forward)

    async def process_queue_to_index(self, batch_size: int = 10) -> BatchResult:
        """
        Index a batch from the consume queue and publish processed copies.

        Args:
            batch_size: Maximum messages to retrieve

        Returns:
            BatchResult: outcome counts; empty if the broker is unavailable
        """

        async def index_and_forward(message: Message) -> None:
            await self.indexer.index(message)
            await self.publisher.publish(message.mark_processed(), self.publish_queue)

        return await self._run_batch("indexing", batch_size, index_and_forward)

    async def run_heartbeat(self) -> Dict[str, bool]:
        """
        Check broker and indexer health and reinitialize what is unhealthy.

        Returns:
            Dict with the ``broker`` and ``indexer`` health observed before any repair
        """
        bind_context(job="heartbeat")
        try:
            broker_ok = await self.broker.check_health()
            indexer_ok = await self.indexer.health()
            logger.info("Service health", broker=broker_ok, indexer=indexer_ok)

            if not broker_ok:
                logger.warning("Broker unhealthy, reconnecting")
                try:
                    await self.broker.connect()
                except Exception as e:
                    logger.error("Broker reconnection failed", error=str(e))

            if not indexer_ok:
                logger.warning("Indexer unhealthy, reinitializing")
                try:
                    await self.indexer.initialize()
                except Exception as e:
                    logger.error("Indexer reinitialization failed", error=str(e))

            return {"broker": broker_ok, "indexer": indexer_ok}
        finally:
            clear_context("job")

    async def _run_batch(self, job: str, batch_size: int, handler: MessageHandler) -> BatchResult:
        bind_context(job=job)
        result = BatchResult()
        try:
            batch = await self.retriever.retrieve(self.consume_queue, batch_size)
            result.retrieved = len(batch)
            if not batch.messages:
                logger.debug(f"No messages in {self.consume_queue} to process")
                return result

            # Sequential: each message is resolved before the next one is handled
            for message in batch:
                ok = await resolve_message(message, batch.pending, self.acknowledger, handler)
                result.record(ok)

            logger.info(f"Batch {job} completed", **result.as_dict())
        except Exception as e:
            logger.error(f"Batch {job} failed", error=str(e))
        finally:
            clear_context("job")
        return result

    def _add_job(
        self,
        func: Any,
        schedule: str,
        job_id: str,
        name: str,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Job:
        trigger = CronTrigger.from_crontab(schedule, timezone=self.scheduler.timezone)

        # Pending jobs of a stopped scheduler are not deduplicated by id
        for existing in [job for job in self.jobs if job.id == job_id]:
            try:
                existing.remove()
            except JobLookupError:
                pass
            self.jobs.remove(existing)

        job = self.scheduler.add_job(
            func,
            trigger,
            id=job_id,
            name=name,
            kwargs=kwargs or {},
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.jobs.append(job)
        logger.info(f"Scheduled job '{name}'", schedule=schedule)
        return job
