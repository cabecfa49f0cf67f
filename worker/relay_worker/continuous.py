"""Continuous background transfer from the publish queue back to the consume queue."""

import asyncio
from typing import Optional

from relay_shared.logging import get_logger
from relay_shared.models import Message
from relay_shared.queue import Acknowledger, BatchRetriever, MessagePublisher, RetrievedBatch
from .batch import BatchResult, resolve_message

logger = get_logger(__name__)


class ContinuousTransferLoop:
    """
    Long-lived task moving messages between two queues.

    Each iteration pulls up to ``batch_size`` messages from ``source_queue``
    and republishes them to ``target_queue`` in concurrent sub-batches of
    ``sub_batch_size``. An empty pull waits ``idle_interval`` seconds and a
    failed iteration waits ``error_interval`` seconds; both waits end early
    when :meth:`stop` is called. The loop only ends through :meth:`stop`.
    """

    def __init__(
        self,
        retriever: BatchRetriever,
        publisher: MessagePublisher,
        acknowledger: Acknowledger,
        source_queue: str,
        target_queue: str,
        batch_size: int = 100,
        sub_batch_size: int = 20,
        idle_interval: float = 5.0,
        error_interval: float = 3.0,
    ):
        if sub_batch_size < 1:
            raise ValueError("sub_batch_size must be >= 1")

        self.retriever = retriever
        self.publisher = publisher
        self.acknowledger = acknowledger
        self.source_queue = source_queue
        self.target_queue = target_queue
        self.batch_size = batch_size
        self.sub_batch_size = sub_batch_size
        self.idle_interval = idle_interval
        self.error_interval = error_interval

        self.iterations = 0
        self.totals = BatchResult()
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop task. Calling it while running is a no-op."""
        if self.is_running:
            logger.warning("Continuous processing is already running")
            return

        self._stop.clear()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="continuous-transfer")
        logger.info(
            "Continuous processing started",
            source_queue=self.source_queue,
            target_queue=self.target_queue,
            batch_size=self.batch_size,
        )

    async def stop(self) -> None:
        """Request a stop and wait for the current iteration to finish."""
        self._stop.set()
        task = self._task
        self._task = None
        if task is None:
            return

        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Continuous processing stopped", **self.totals.as_dict())

    async def run_once(self) -> BatchResult:
        """
        Run a single iteration.

        Returns:
            BatchResult: counts for the pulled batch

        Raises:
            ChannelNotReadyError: If the broker is not connected
        """
        batch = await self.retriever.retrieve(self.source_queue, self.batch_size)
        result = BatchResult(retrieved=len(batch))

        for start in range(0, len(batch.messages), self.sub_batch_size):
            chunk = batch.messages[start:start + self.sub_batch_size]
            outcomes = await asyncio.gather(
                *(self._transfer(message, batch) for message in chunk),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    logger.error("Unexpected error in transfer unit", error=str(outcome))
                result.record(outcome is True)

        if result.retrieved:
            logger.info(
                f"Continuous transfer: {result.succeeded} succeeded, {result.failed} failed",
                **result.as_dict(),
            )
        return result

    async def _transfer(self, message: Message, batch: RetrievedBatch) -> bool:
        async def publish(msg: Message) -> None:
            await self.publisher.publish(msg, self.target_queue)

        return await resolve_message(message, batch.pending, self.acknowledger, publish)

    async def _run(self) -> None:
        while not self._stop.is_set():
            self.iterations += 1
            try:
                result = await self.run_once()
            except Exception as e:
                logger.error("Error in continuous processing", error=str(e))
                await self._wait(self.error_interval)
                continue

            self.totals.merge(result)
            if result.retrieved == 0:
                await self._wait(self.idle_interval)

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
