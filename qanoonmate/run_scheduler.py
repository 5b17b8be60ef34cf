#!/usr/bin/env python3
"""
Maintenance worker: payment expiry, idempotency key cleanup and overdue
consultation checks, for deployments where the API containers run with
ENABLE_SCHEDULER=false.

    python -m qanoonmate.run_scheduler
"""
import asyncio
import logging
import signal
import sys

from .config import settings
from .init_db import check_db_connection
from .scheduler import JOBS, setup_scheduler, shutdown_scheduler, start_scheduler
from .utils.structured_logging import configure_logging

logger = logging.getLogger("qanoonmate.worker")

DB_RETRY_SECONDS = 2


async def database_ready(max_attempts: int = 30) -> bool:
    for attempt in range(1, max_attempts + 1):
        if await check_db_connection():
            return True
        logger.debug(f"Database not ready (attempt {attempt}/{max_attempts})")
        await asyncio.sleep(DB_RETRY_SECONDS)
    return False


async def main() -> int:
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info("🚀 QanoonMate maintenance worker starting")
    for job_id, _, interval_setting, _ in JOBS:
        logger.info(f"  {job_id}: every {getattr(settings, interval_setting)} min")

    # Tables are created by the API container; the worker only waits for them
    if not await database_ready():
        logger.error("✗ Database unavailable, worker not started")
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    setup_scheduler()
    start_scheduler()
    try:
        await stop.wait()
    finally:
        logger.info("Stopping maintenance worker")
        shutdown_scheduler()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)
