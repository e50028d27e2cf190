"""
Sync Scheduler Service

Runs the bulk availability sync every SYNC_INTERVAL_MINUTES inside the API
process. Uses APScheduler; the blocking sync runs in a worker thread so the
event loop keeps serving requests.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..database import SessionLocal
from .pms_client import get_pms_client
from .sync_orchestrator import SyncOrchestrator, BulkSyncResult, get_shared_rate_limiter

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_cancel_event = threading.Event()
_run_lock = threading.Lock()
_last_sync_time: Optional[datetime] = None
_last_sync_result: Optional[Dict] = None

JOB_ID = "availability_sync"


def run_bulk_sync(organization_id: Optional[str] = None, cancel_event: Optional[threading.Event] = None) -> Optional[BulkSyncResult]:
    """
    Run one bulk sync with its own session.

    Returns None if another bulk sync is already running in this process.
    """
    global _last_sync_time, _last_sync_result

    if not _run_lock.acquire(blocking=False):
        logger.warning("Bulk sync already running, skipping")
        return None

    db = SessionLocal()
    try:
        orchestrator = SyncOrchestrator(
            db,
            get_pms_client(),
            session_factory=SessionLocal,
            rate_limiter=get_shared_rate_limiter(),
            cancel_event=cancel_event or _cancel_event,
        )
        result = orchestrator.sync_all(organization_id)
        _last_sync_time = datetime.utcnow()
        _last_sync_result = {
            "total_properties": result.total_properties,
            "synced_properties": result.synced_properties,
            "failed_properties": result.failed_properties,
            "canceled": result.canceled,
        }
        return result
    finally:
        db.close()
        _run_lock.release()


async def run_sync_job():
    """Async job function called by the scheduler."""
    logger.info("Running scheduled availability sync job...")
    try:
        await asyncio.to_thread(run_bulk_sync)
    except Exception:
        logger.exception("Scheduled availability sync job failed")


def start_sync_scheduler() -> bool:
    """
    Start the interval job.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Sync scheduler is already running")
        return True

    _cancel_event.clear()
    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        run_sync_job,
        IntervalTrigger(minutes=settings.sync_interval_minutes),
        id=JOB_ID,
        name=f"Availability sync every {settings.sync_interval_minutes} min",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info(f"Sync scheduler started (every {settings.sync_interval_minutes} minutes)")
    return True


def stop_sync_scheduler() -> bool:
    """Stop the scheduler and ask any running sync to stop at the next boundary."""
    global _scheduler

    _cancel_event.set()
    if _scheduler is None:
        return True

    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Sync scheduler stopped")
    return True


def get_scheduler_status() -> Dict:
    status = {
        "running": False,
        "interval_minutes": settings.sync_interval_minutes,
        "next_run": None,
        "last_sync": _last_sync_time.isoformat() if _last_sync_time else None,
        "last_sync_result": _last_sync_result,
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        job = _scheduler.get_job(JOB_ID)
        if job and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()

    return status
