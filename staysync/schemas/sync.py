from pydantic import BaseModel
from typing import List, Optional, Dict, Any


class SyncResultResponse(BaseModel):
    property_id: str
    property_name: Optional[str] = None
    success: bool
    days_processed: int = 0
    days_blocked: int = 0
    days_freed: int = 0
    days_deferred: int = 0
    errors: List[str] = []
    canceled: bool = False
    duration_ms: int = 0


class BulkSyncResponse(BaseModel):
    total_properties: int
    synced_properties: int
    failed_properties: int
    results: List[SyncResultResponse]
    canceled: bool = False
    duration_ms: int = 0


class CalendarActionResponse(BaseModel):
    """Response of POST /api/calendar/sync; only the fields of the requested action are set"""
    success: bool = True
    action: str
    result: Optional[SyncResultResponse] = None
    bulk: Optional[BulkSyncResponse] = None
    days_blocked: Optional[int] = None
    days_skipped: Optional[int] = None
    days_freed: Optional[int] = None


class PublishResponse(BaseModel):
    success: bool
    reservation_id: str
    external_reservation_id: Optional[str] = None
    already_synced: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    database: str
    pms: Dict[str, Any]
    listing_cache: Dict[str, Any]
    scheduler: Dict[str, Any]
