"""
Sync Orchestrator

Runs the availability reconciler over every mapped property.

- Sequential by default, spacing properties by 5x the inter-request delay
- With SYNC_MAX_WORKERS > 1, a bounded thread pool shares one token
  bucket so the PMS still sees at most N requests per minute
- One property failing never stops the others
- A cancel event is honored between properties (and between batches)
"""

import time
import threading
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import SyncError
from ..models.property import Property
from ..utils.token_bucket import TokenBucketRateLimiter
from .availability_reconciler import AvailabilityReconciler, SyncResult

logger = logging.getLogger(__name__)

PROPERTY_DELAY_MULTIPLIER = 5


@dataclass
class BulkSyncResult:
    total_properties: int = 0
    synced_properties: int = 0
    failed_properties: int = 0
    results: List[SyncResult] = field(default_factory=list)
    canceled: bool = False
    duration_ms: int = 0

    def to_dict(self) -> Dict:
        return {
            "total_properties": self.total_properties,
            "synced_properties": self.synced_properties,
            "failed_properties": self.failed_properties,
            "results": [r.to_dict() for r in self.results],
            "canceled": self.canceled,
            "duration_ms": self.duration_ms,
        }


class SyncOrchestrator:

    def __init__(
        self,
        db: Session,
        client,
        session_factory: Optional[Callable[[], Session]] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        max_workers: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
        days_ahead: Optional[int] = None,
    ):
        self.db = db
        self.client = client
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(settings.pms_requests_per_minute)
        self.max_workers = max_workers or settings.sync_max_workers
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.rate_limit_delay_seconds
        self._sleep = sleep
        self.cancel_event = cancel_event or threading.Event()
        self.days_ahead = days_ahead

    def _reconciler(self, db: Session) -> AvailabilityReconciler:
        return AvailabilityReconciler(
            db,
            self.client,
            rate_limiter=self.rate_limiter,
            days_ahead=self.days_ahead,
            delay_seconds=self.delay_seconds,
            sleep=self._sleep,
            cancel_event=self.cancel_event,
        )

    def _mapped_properties(self, organization_id: Optional[str]) -> List[Tuple[str, str]]:
        query = self.db.query(Property.id, Property.name).filter(
            Property.pms_listing_id.isnot(None),
            Property.pms_listing_id != "",
        )
        if organization_id:
            query = query.filter(Property.organization_id == organization_id)
        return [(row.id, row.name) for row in query.order_by(Property.created_at, Property.id).all()]

    def sync_property(self, property_id: str, today: Optional[date] = None) -> SyncResult:
        """
        Reconcile a single property.

        Raises:
            NotMapped: property missing or unmapped
        """
        return self._reconciler(self.db).reconcile(property_id, today=today)

    def _sync_isolated(self, db: Session, property_id: str, name: str, today: Optional[date]) -> SyncResult:
        try:
            return self._reconciler(db).reconcile(property_id, today=today)
        except SyncError as e:
            db.rollback()
            logger.warning(f"Sync failed for property {name} ({property_id}): {e.code}: {e}")
            return SyncResult(property_id=property_id, property_name=name, success=False, errors=[str(e)])
        except Exception as e:
            db.rollback()
            logger.exception(f"Unexpected error syncing property {name} ({property_id})")
            return SyncResult(property_id=property_id, property_name=name, success=False, errors=[str(e)])

    def _sync_in_own_session(self, property_id: str, name: str, today: Optional[date]) -> SyncResult:
        if self.cancel_event.is_set():
            return SyncResult(property_id=property_id, property_name=name, success=False, canceled=True)
        db = self.session_factory()
        try:
            return self._sync_isolated(db, property_id, name, today)
        finally:
            db.close()

    def sync_all(self, organization_id: Optional[str] = None, today: Optional[date] = None) -> BulkSyncResult:
        """Reconcile every mapped property, optionally limited to one organization."""
        start_time = time.time()
        properties = self._mapped_properties(organization_id)
        bulk = BulkSyncResult(total_properties=len(properties))

        logger.info(f"Starting bulk sync for {len(properties)} properties (workers={self.max_workers})")

        if self.max_workers > 1 and self.session_factory is not None and len(properties) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sync") as pool:
                futures = [
                    pool.submit(self._sync_in_own_session, property_id, name, today)
                    for property_id, name in properties
                ]
                for future in as_completed(futures):
                    bulk.results.append(future.result())
        else:
            for index, (property_id, name) in enumerate(properties):
                if self.cancel_event.is_set():
                    break
                if index > 0 and self.delay_seconds > 0:
                    self._sleep(self.delay_seconds * PROPERTY_DELAY_MULTIPLIER)
                bulk.results.append(self._sync_isolated(self.db, property_id, name, today))

        bulk.canceled = self.cancel_event.is_set()
        bulk.synced_properties = sum(1 for r in bulk.results if r.success)
        bulk.failed_properties = sum(1 for r in bulk.results if not r.success and not r.canceled)
        bulk.duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            f"Bulk sync finished: {bulk.synced_properties}/{bulk.total_properties} synced, "
            f"{bulk.failed_properties} failed in {bulk.duration_ms}ms"
        )
        return bulk

    def cancel(self):
        self.cancel_event.set()


_shared_rate_limiter: Optional[TokenBucketRateLimiter] = None
_shared_rate_limiter_lock = threading.Lock()


def get_shared_rate_limiter() -> TokenBucketRateLimiter:
    """One PMS request budget for every sync entry point in the process."""
    global _shared_rate_limiter
    with _shared_rate_limiter_lock:
        if _shared_rate_limiter is None:
            _shared_rate_limiter = TokenBucketRateLimiter(settings.pms_requests_per_minute)
        return _shared_rate_limiter
