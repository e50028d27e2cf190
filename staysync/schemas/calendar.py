from pydantic import BaseModel, Field, model_validator
from typing import List, Optional, Literal
from datetime import date, datetime


class CalendarDayResponse(BaseModel):
    date: date
    status: str
    reason: Optional[str] = None
    reservation_id: Optional[str] = None


class CalendarResponse(BaseModel):
    success: bool = True
    property_id: str
    start_date: date
    end_date: date
    days: List[CalendarDayResponse]


class SyncStatusResponse(BaseModel):
    success: bool = True
    property_id: str
    last_sync: Optional[datetime] = None
    blocked_days: int
    booked_days: int
    available_days: int
    next_available: Optional[date] = None


class CalendarSyncRequest(BaseModel):
    """Body of POST /api/calendar/sync"""
    action: Literal["sync_property", "sync_all", "block_dates", "unblock_dates"]
    property_id: Optional[str] = None
    organization_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(None, max_length=255)

    @model_validator(mode='after')
    def validate_action_fields(self):
        if self.action != "sync_all" and not self.property_id:
            raise ValueError(f"property_id is required for {self.action}")
        if self.action in ("block_dates", "unblock_dates"):
            if not self.start_date or not self.end_date:
                raise ValueError(f"start_date and end_date are required for {self.action}")
            if self.end_date <= self.start_date:
                raise ValueError("end_date must be after start_date")
        return self
