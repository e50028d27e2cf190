"""
Availability Reconciler (inbound sync)

Pulls availability for one property from the PMS and mirrors it into the
internal calendar.

Rules per date:
- Externally blocked, locally not Booked: Blocked / synced-external
- Externally available, locally Blocked by a previous sync and not held by
  a reservation: Available
- Anything else: no write (manual blocks and bookings are left alone)

The PMS has no calendar read endpoint, so availability is checked with
weekly pricing requests: a "not available" answer blocks the whole week.
"""

import time
import threading
import logging
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import SyncError, NotMapped, DatesUnavailable, ConflictLocalReservationWins
from ..models.property import Property
from ..models.calendar_day import DayStatus, BlockReason
from ..utils.logging_config import get_logger, organization_context
from ..utils.token_bucket import TokenBucketRateLimiter
from .audit_service import AuditService
from .calendar_store import CalendarStore, date_range

logger = logging.getLogger(__name__)
sync_logger = get_logger(__name__)


@dataclass
class SyncResult:
    """Tallies of one reconciliation pass"""
    property_id: str
    property_name: Optional[str] = None
    success: bool = True
    days_processed: int = 0
    days_blocked: int = 0
    days_freed: int = 0
    days_deferred: int = 0
    errors: List[str] = field(default_factory=list)
    canceled: bool = False
    duration_ms: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class _CheckedBatch:
    start: date
    end: date
    externally_blocked: bool


class AvailabilityReconciler:
    """
    Reconciles one property at a time.

    Safe to run from several workers as long as they share one
    TokenBucketRateLimiter and each uses its own Session.
    """

    def __init__(
        self,
        db: Session,
        client,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        store: Optional[CalendarStore] = None,
        audit: Optional[AuditService] = None,
        days_ahead: Optional[int] = None,
        batch_days: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.db = db
        self.client = client
        self.rate_limiter = rate_limiter
        self.audit = audit or AuditService(db)
        self.store = store or CalendarStore(db, audit=self.audit)
        self.days_ahead = days_ahead or settings.sync_days_ahead
        self.batch_days = batch_days or settings.sync_batch_days
        self.delay_seconds = delay_seconds if delay_seconds is not None else settings.rate_limit_delay_seconds
        self._sleep = sleep
        self.cancel_event = cancel_event

    def _is_canceled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _batches(self, start: date, end: date) -> List[Tuple[date, date]]:
        """[start, end) cut into batch_days windows; the last one is clipped."""
        batches = []
        current = start
        while current < end:
            batch_end = min(current + timedelta(days=self.batch_days), end)
            batches.append((current, batch_end))
            current = batch_end
        return batches

    def _check_batch(self, listing_id: str, start: date, end: date) -> bool:
        """True if the PMS reports the window as not bookable."""
        if self.rate_limiter:
            self.rate_limiter.acquire()
        try:
            self.client.get_pricing(listing_id, start, end, 1)
        except DatesUnavailable:
            return True
        return False

    def reconcile(self, property_id: str, today: Optional[date] = None) -> SyncResult:
        """
        Run one inbound pass over [today, today + days_ahead).

        Raises:
            NotMapped: property missing or without an external listing id
        """
        start_time = time.time()

        prop = self.db.query(Property).filter(Property.id == property_id).first()
        if not prop:
            raise NotMapped(f"Property {property_id} not found")
        if not prop.is_mapped:
            raise NotMapped(f"Property {prop.name} is not mapped to a PMS listing")

        with organization_context(prop.organization_id):
            return self._reconcile(prop, today, start_time)

    def _reconcile(self, prop: Property, today: Optional[date], start_time: float) -> SyncResult:
        property_id = prop.id
        listing_id = prop.pms_listing_id
        organization_id = prop.organization_id
        result = SyncResult(property_id=property_id, property_name=prop.name)

        horizon_start = today or date.today()
        horizon_end = horizon_start + timedelta(days=self.days_ahead)
        batches = self._batches(horizon_start, horizon_end)

        # Step 1: ask the PMS week by week
        checked: List[_CheckedBatch] = []
        for index, (batch_start, batch_end) in enumerate(batches):
            if self._is_canceled():
                result.canceled = True
                logger.info(f"Sync of property {property_id} canceled after {index}/{len(batches)} batches")
                break

            if index > 0 and self.delay_seconds > 0:
                self._sleep(self.delay_seconds)

            try:
                blocked = self._check_batch(listing_id, batch_start, batch_end)
            except SyncError as e:
                result.errors.append(f"{batch_start.isoformat()}..{batch_end.isoformat()}: {e.code}: {e}")
                logger.warning(f"Property {property_id}: batch {batch_start}..{batch_end} failed: {e}")
                continue

            checked.append(_CheckedBatch(batch_start, batch_end, blocked))

        # Step 2: local state for the horizon, detached from the session
        local: Dict[date, Tuple[str, Optional[str], Optional[str]]] = {
            row.date: (row.status, row.reason, row.reservation_id)
            for row in self.store.get_range(property_id, horizon_start, horizon_end)
        }

        # Step 3: apply per date
        for batch in checked:
            for day in date_range(batch.start, batch.end):
                result.days_processed += 1
                status, reason, reservation_id = local.get(day, (DayStatus.AVAILABLE.value, None, None))

                try:
                    if batch.externally_blocked:
                        if status == DayStatus.BOOKED.value:
                            continue
                        if status == DayStatus.BLOCKED.value and reason != BlockReason.SYNCED_EXTERNAL:
                            # Manual block stays manual
                            continue
                        self.store.upsert_day(
                            property_id, day, DayStatus.BLOCKED.value,
                            reason=BlockReason.SYNCED_EXTERNAL,
                            organization_id=organization_id,
                        )
                        result.days_blocked += 1
                    elif (
                        status == DayStatus.BLOCKED.value
                        and reason == BlockReason.SYNCED_EXTERNAL
                        and reservation_id is None
                    ):
                        if self.store.free_day(property_id, day):
                            result.days_freed += 1
                except ConflictLocalReservationWins as e:
                    result.days_deferred += 1
                    logger.info(f"Deferred to local reservation: {e}")

        result.success = not result.errors and not result.canceled
        result.duration_ms = int((time.time() - start_time) * 1000)

        self.audit.record_inbound(
            organization_id,
            property_id,
            days_processed=result.days_processed,
            days_blocked=result.days_blocked,
            days_freed=result.days_freed,
            errors=result.errors,
            canceled=result.canceled,
        )
        sync_logger.sync_completed(
            property_id,
            result.days_processed,
            result.days_blocked,
            result.days_freed,
            len(result.errors),
            duration_ms=result.duration_ms,
        )
        return result
