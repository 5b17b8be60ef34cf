"""
Periodic maintenance jobs.
Uses APScheduler inside the API process (or in run_scheduler when
ENABLE_SCHEDULER is off for the API containers).
"""
import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import settings
from .database import AsyncSessionLocal
from .services.consultation_lifecycle import find_overdue_consultations
from .services.payments import expire_stale_payments
from .utils.idempotency import cleanup_expired_keys
from .utils.structured_logging import log_with_context

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

# Guards against overlapping runs of the same job
running_tasks = set()


async def run_job(name: str, job: Callable[..., Awaitable[int]]) -> None:
    """Run a job in its own session; skips the run when the previous one is still busy"""
    if name in running_tasks:
        logger.warning(f"Task {name} is already running, skipping...")
        return

    running_tasks.add(name)
    try:
        async with AsyncSessionLocal() as db:
            count = await job(db)
            await db.commit()
        if count:
            logger.info(f"Task {name} processed {count} record(s)")
        else:
            logger.debug(f"Task {name}: nothing to do")
    except Exception as e:
        logger.error(f"Error running task {name}: {e}", exc_info=True)
    finally:
        running_tasks.discard(name)


async def flag_overdue_consultations(db) -> int:
    """Log consultations whose slot ended without being started or closed"""
    overdue = await find_overdue_consultations(db, settings.NO_SHOW_GRACE_MINUTES)
    for consultation in overdue:
        log_with_context(
            logger,
            logging.WARNING,
            "Consultation is overdue",
            context={
                "consultation_id": consultation.id,
                "lawyer_id": consultation.lawyer_id,
                "status": consultation.status,
                "scheduled_date": consultation.scheduled_date.isoformat(),
            },
        )
    return len(overdue)


async def expire_payments_job():
    await run_job("expire_payments", expire_stale_payments)


async def cleanup_idempotency_job():
    await run_job("cleanup_idempotency_keys", cleanup_expired_keys)


async def overdue_consultations_job():
    await run_job("flag_overdue_consultations", flag_overdue_consultations)


JOBS = (
    ("expire_payments", expire_payments_job, "PAYMENT_EXPIRY_INTERVAL", "Expire stale payments"),
    ("cleanup_idempotency_keys", cleanup_idempotency_job, "IDEMPOTENCY_CLEANUP_INTERVAL", "Remove expired idempotency keys"),
    ("flag_overdue_consultations", overdue_consultations_job, "OVERDUE_CONSULTATIONS_INTERVAL", "Flag overdue consultations"),
)


def setup_scheduler():
    """Register every periodic job"""
    for job_id, func, interval_setting, name in JOBS:
        minutes = getattr(settings, interval_setting)
        scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=minutes * 60 * 2,
        )
        logger.info(f"Scheduled {job_id} every {minutes} minute(s)")
    print(f"✓ Scheduler configured with {len(JOBS)} jobs")


def start_scheduler():
    """Start the scheduler unless it is already running"""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")
        print("✓ Scheduler started")
        for job in scheduler.get_jobs():
            print(f"  - {job.name} (id: {job.id}), next run: {job.next_run_time}")


def shutdown_scheduler():
    """Stop the scheduler without waiting for running jobs"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        print("✓ Scheduler stopped")
