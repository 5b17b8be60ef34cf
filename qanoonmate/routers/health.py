"""Liveness and dependency checks for the load balancer and the ops dashboard"""
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database import get_db
from ..scheduler import JOBS, scheduler

router = APIRouter()


@router.get("/health")
async def health():
    """Process is up; also reports which outbound integrations are configured"""
    return {
        "status": "ok",
        "integrations": {
            "assistant": bool(settings.ASSISTANT_API_URL),
            "payment_gateway": bool(settings.PAYMENT_STATUS_URL),
            "payment_webhook": bool(settings.PAYMENT_WEBHOOK_SECRET),
        },
    }


@router.get("/health/db")
async def health_db(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return {"status": "error", "database": "disconnected", "error": str(e)}
    return {"status": "ok", "database": "connected"}


@router.get("/health/scheduler")
async def health_scheduler():
    """
    Scheduler state in this process.

    With ENABLE_SCHEDULER=false the jobs live in the run_scheduler container,
    so `expected_jobs` lists what that process should be running.
    """
    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run": str(job.next_run_time) if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
    return {
        "scheduler_enabled": settings.ENABLE_SCHEDULER,
        "scheduler_running": scheduler.running,
        "jobs_count": len(jobs),
        "jobs": jobs,
        "expected_jobs": [job_id for job_id, *_ in JOBS],
    }
