"""
Public Quote API

Guest-facing pricing from the PMS rate table. No authentication; rate
limited per client IP.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import NotMapped
from ..models.property import Property
from ..schemas.quote import QuoteRequest, QuoteResponse, AvailabilityCheckRequest, AvailabilityCheckResponse
from ..services.pricing_engine import PricingEngine
from ..utils.dependencies import pricing_engine_dependency
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/public", tags=["Public Quote"])


def _get_mapped_property(db: Session, property_id: str) -> Property:
    prop = db.query(Property).filter(Property.id == property_id).first()
    if not prop:
        raise NotMapped(f"Property {property_id} not found")
    if not prop.is_mapped:
        raise NotMapped(f"Property {prop.name} is not mapped to a PMS listing")
    return prop


@router.post("/quote", response_model=QuoteResponse)
@limiter.limit(get_rate_limit("quote"))
def create_quote(
    request: Request,
    body: QuoteRequest,
    db: Session = Depends(get_db),
    engine: PricingEngine = Depends(pricing_engine_dependency),
):
    """Price a stay. Unavailable dates are reported with zero totals, not rejected."""
    prop = _get_mapped_property(db, body.property_id)

    if prop.max_guests and body.guest_count > prop.max_guests:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": {"code": "GUEST_LIMIT", "message": f"Maximum {prop.max_guests} guests allowed"},
            },
        )

    quote = engine.compute_quote(prop.pms_listing_id, body.check_in, body.check_out, body.guest_count)
    payload = quote.to_dict()
    payload.pop("external_listing_id")
    return QuoteResponse(property_id=prop.id, **payload)


@router.post("/availability", response_model=AvailabilityCheckResponse)
@limiter.limit(get_rate_limit("quote"))
def check_availability(
    request: Request,
    body: AvailabilityCheckRequest,
    db: Session = Depends(get_db),
    engine: PricingEngine = Depends(pricing_engine_dependency),
):
    prop = _get_mapped_property(db, body.property_id)
    result = engine.check_availability(prop.pms_listing_id, body.check_in, body.check_out)
    return AvailabilityCheckResponse(property_id=prop.id, **result)
