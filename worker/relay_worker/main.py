"""Main worker module for the search relay."""

import argparse
import asyncio
import os
import signal
import sys

from relay_shared.logging import get_logger, setup_logging
from relay_worker import __version__
from relay_worker.app import RelayApplication
from relay_worker.config import Settings, get_settings

# Logger for this module
logger = get_logger(__name__)


async def run(settings: Settings, continuous: bool) -> None:
    """Start the relay and block until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    app = RelayApplication(settings, continuous_enabled=continuous)
    try:
        await app.start()
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        await app.stop()


def main() -> None:
    """Main entry point for the worker."""
    parser = argparse.ArgumentParser(description="RabbitMQ to Elasticsearch relay worker")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    parser.add_argument(
        "--no-continuous",
        action="store_true",
        help="Disable the continuous transfer loop",
    )
    args = parser.parse_args()

    # Load settings
    settings = get_settings()

    setup_logging(level=args.log_level.upper(), json_format=settings.log_json)

    continuous = settings.continuous_enabled and not args.no_continuous
    logger.info(
        "Starting relay worker",
        version=__version__,
        consume_queue=settings.rabbitmq_queue_consume,
        publish_queue=settings.rabbitmq_queue_publish,
        continuous=continuous,
    )

    try:
        asyncio.run(run(settings, continuous))
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.exception("Worker failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
