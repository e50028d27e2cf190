#!/usr/bin/env python
"""
Availability Sync Worker

Standalone process that reconciles every mapped property against the PMS
on a fixed interval. Use instead of SYNC_SCHEDULER_ENABLED when the API
runs with several replicas.

Run with:
    python worker.py

Or once:
    python worker.py --once
"""

import sys
import time
import signal
import logging
import argparse
import threading

from staysync.config import settings
from staysync.database import create_tables
from staysync.services.sync_scheduler import run_bulk_sync
from staysync.utils.logging_config import setup_logging

logger = logging.getLogger("worker")

STOP = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    logger.info("Received shutdown signal, stopping at the next batch boundary...")
    STOP.set()


def run_cycle(cycle: int, organization_id=None):
    start_time = time.time()
    result = run_bulk_sync(organization_id=organization_id, cancel_event=STOP)
    if result is None:
        return

    duration = time.time() - start_time
    logger.info(
        f"Cycle {cycle}: "
        f"{result.synced_properties}/{result.total_properties} synced | "
        f"{result.failed_properties} failed | "
        f"{duration:.2f}s"
        + (" | canceled" if result.canceled else "")
    )


def run_worker(once: bool = False, organization_id=None):
    """Main worker loop"""
    interval = settings.sync_interval_minutes * 60

    logger.info("=" * 50)
    logger.info("Starting Availability Sync Worker")
    logger.info(f"Interval: {settings.sync_interval_minutes} min")
    logger.info(f"Horizon: {settings.sync_days_ahead} days, batch {settings.sync_batch_days} days")
    logger.info(f"Workers: {settings.sync_max_workers}, PMS budget {settings.pms_requests_per_minute}/min")
    logger.info("=" * 50)

    create_tables()

    cycle = 0
    while not STOP.is_set():
        cycle += 1
        try:
            run_cycle(cycle, organization_id)
        except Exception:
            logger.exception(f"Critical error in cycle {cycle}")

        if once:
            break
        STOP.wait(interval)

    logger.info("Worker shutdown complete")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Availability sync worker")
    parser.add_argument("--once", action="store_true", help="Run a single bulk sync and exit")
    parser.add_argument("--organization", default=None, help="Only sync properties of this organization")
    args = parser.parse_args(argv)

    setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker(once=args.once, organization_id=args.organization)
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
