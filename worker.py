#!/usr/bin/env python3
"""
GitHub PR Review Bot
Queue worker entry point: drains review jobs until SIGINT / SIGTERM
"""

import asyncio
import signal
import sys

import structlog

from config.settings import Settings, settings
from src.services.job_processor import build_job_processor
from src.services.job_queue import build_job_queue
from src.utils.logging_config import configure_logging

logger = structlog.get_logger()


async def run_worker(settings: Settings) -> None:
    """Open the queue, register handlers and drain until a shutdown signal arrives"""
    job_queue = build_job_queue(settings)
    build_job_processor(settings).register_handlers(job_queue)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, job_queue.stop)

    async with job_queue:
        logger.info(
            "Worker ready and listening for jobs",
            queue=job_queue.queue_name,
            concurrency=job_queue.concurrency,
        )
        await job_queue.drain()

    logger.info("Worker shut down")


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    if not settings.uses_postgres:
        logger.error(
            "Standalone worker needs a shared PostgreSQL broker; the in-memory queue is drained by the web process",
            database_url=settings.DATABASE_URL,
        )
        sys.exit(1)

    logger.info("Starting PR review worker process")

    try:
        asyncio.run(run_worker(settings))
    except Exception as e:
        logger.error("Worker failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
