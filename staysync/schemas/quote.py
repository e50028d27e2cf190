from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import date


class QuoteRequest(BaseModel):
    property_id: str = Field(..., min_length=1, max_length=100)
    check_in: date
    check_out: date
    adults: int = Field(1, ge=1, le=50)
    children: int = Field(0, ge=0, le=50)

    @property
    def guest_count(self) -> int:
        return self.adults + self.children


class NightlyRateResponse(BaseModel):
    date: date
    price: int
    min_nights: int
    status: str


class DiscountResponse(BaseModel):
    type: str
    description: str
    amount: int


class QuoteResponse(BaseModel):
    """
    All amounts are integer minor currency units. When available is false
    the totals are zero and blocked_dates lists the offending nights.
    """
    success: bool = True
    property_id: str
    check_in: date
    check_out: date
    guest_count: int
    nights: int
    nightly_rates: List[NightlyRateResponse]
    accommodation_total: int
    cleaning_fee: int
    service_fee: int
    taxes: int
    grand_total: int
    average_nightly_rate: int
    currency: str
    available: bool
    blocked_dates: List[date] = []
    min_nights_required: int
    max_nights_allowed: Optional[int] = None
    meets_stay_requirements: bool
    discounts: List[DiscountResponse] = []
    discount_total: int = 0


class AvailabilityCheckRequest(BaseModel):
    property_id: str = Field(..., min_length=1, max_length=100)
    check_in: date
    check_out: date

    @model_validator(mode='after')
    def validate_dates(self):
        # Same rule the pricing engine enforces; rejected here as a 422
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self


class AvailabilityCheckResponse(BaseModel):
    success: bool = True
    property_id: str
    available: bool
    nights: int
    blocked_dates: List[date] = []
    min_nights_required: int
