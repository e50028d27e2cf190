"""
Calendar & Sync API Router

Read the internal calendar, trigger inbound syncs and manage manual blocks.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db, SessionLocal
from ..errors import InvalidRange, NotMapped
from ..models.calendar_day import BlockReason
from ..models.property import Property
from ..schemas.calendar import (
    CalendarResponse,
    CalendarDayResponse,
    CalendarSyncRequest,
    SyncStatusResponse,
)
from ..schemas.sync import CalendarActionResponse, SyncResultResponse, BulkSyncResponse
from ..services.calendar_store import CalendarStore
from ..services.pms_client import PMSClient
from ..services.sync_orchestrator import SyncOrchestrator
from ..utils.dependencies import pms_client_dependency, rate_limiter_dependency
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.token_bucket import TokenBucketRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["Calendar"])

MAX_CALENDAR_DAYS = 366


def _require_property(db: Session, property_id: str) -> Property:
    prop = db.query(Property).filter(Property.id == property_id).first()
    if not prop:
        raise NotMapped(f"Property {property_id} not found")
    return prop


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(
    property_id: str = Query(...),
    db: Session = Depends(get_db),
):
    """Last sync time plus 90-day occupancy summary"""
    _require_property(db, property_id)
    status = CalendarStore(db).get_sync_status(property_id)
    return SyncStatusResponse(**status)


@router.get("/{property_id}", response_model=CalendarResponse)
@limiter.limit(get_rate_limit("calendar_get"))
async def get_calendar(
    request: Request,
    property_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    """Daily status for [start_date, end_date); defaults to the next 30 days"""
    _require_property(db, property_id)

    start = start_date or date.today()
    end = end_date or start + timedelta(days=30)
    if end <= start:
        raise InvalidRange("end_date must be after start_date")
    if (end - start).days > MAX_CALENDAR_DAYS:
        raise InvalidRange(f"Range is limited to {MAX_CALENDAR_DAYS} days")

    days = CalendarStore(db).get_availability(property_id, start, end)
    return CalendarResponse(
        property_id=property_id,
        start_date=start,
        end_date=end,
        days=[CalendarDayResponse(**d) for d in days],
    )


@router.post("/sync", response_model=CalendarActionResponse)
@limiter.limit(get_rate_limit("sync"))
def calendar_sync_action(
    request: Request,
    body: CalendarSyncRequest,
    db: Session = Depends(get_db),
    client: PMSClient = Depends(pms_client_dependency),
    rate_limiter: TokenBucketRateLimiter = Depends(rate_limiter_dependency),
):
    """
    Actions:
    - sync_property: reconcile one property now
    - sync_all: reconcile every mapped property (optionally one organization)
    - block_dates / unblock_dates: manual calendar edits
    """
    if body.action in ("sync_property", "sync_all"):
        orchestrator = SyncOrchestrator(
            db, client, session_factory=SessionLocal, rate_limiter=rate_limiter,
        )
        if body.action == "sync_property":
            result = orchestrator.sync_property(body.property_id)
            return CalendarActionResponse(
                success=result.success,
                action=body.action,
                result=SyncResultResponse(**result.to_dict()),
            )

        bulk = orchestrator.sync_all(body.organization_id)
        return CalendarActionResponse(
            success=bulk.failed_properties == 0,
            action=body.action,
            bulk=BulkSyncResponse(**bulk.to_dict()),
        )

    store = CalendarStore(db)
    if body.action == "block_dates":
        counts = store.block_dates(
            body.property_id, body.start_date, body.end_date,
            reason=body.reason or BlockReason.MANUAL_BLOCK,
        )
        return CalendarActionResponse(action=body.action, **counts)

    counts = store.unblock_dates(body.property_id, body.start_date, body.end_date)
    return CalendarActionResponse(action=body.action, **counts)
