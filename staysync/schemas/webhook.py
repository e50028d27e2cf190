from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import date


class PMSWebhookReservation(BaseModel):
    id: str
    listing_id: str
    check_in: date
    check_out: date
    status: Optional[str] = None
    source: Optional[str] = None
    confirmation_code: Optional[str] = None

    @field_validator('id', 'listing_id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        # The PMS sends numeric listing ids
        return str(v) if v is not None else v


class PMSWebhookPayload(BaseModel):
    event: str
    timestamp: Optional[str] = None
    data: PMSWebhookReservation


class WebhookResponse(BaseModel):
    received: bool = True
    processed: bool
    action: str
    reason: Optional[str] = None
    days_booked: int = 0
    days_released: int = 0
    days_deferred: int = 0
