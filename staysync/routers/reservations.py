"""
Reservations API Router

Confirmation (after payment capture), outbound publishing to the PMS and
cancellation.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.sync import PublishResponse
from ..services.pms_client import PMSClient
from ..services.reservation_publisher import ReservationPublisher
from ..utils.dependencies import pms_client_dependency
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/reservations", tags=["Reservations"])


@router.post("/{reservation_id}/confirm", response_model=PublishResponse)
@limiter.limit(get_rate_limit("publish"))
def confirm_reservation(
    request: Request,
    reservation_id: str,
    db: Session = Depends(get_db),
    client: PMSClient = Depends(pms_client_dependency),
):
    """Payment captured: book the nights locally, then publish to the PMS."""
    result = ReservationPublisher(db, client).confirm(reservation_id)
    return PublishResponse(**result.to_dict())


@router.post("/{reservation_id}/publish", response_model=PublishResponse)
@limiter.limit(get_rate_limit("publish"))
def publish_reservation(
    request: Request,
    reservation_id: str,
    db: Session = Depends(get_db),
    client: PMSClient = Depends(pms_client_dependency),
):
    """Retry an outbound publish. A no-op for already published reservations."""
    result = ReservationPublisher(db, client).publish(reservation_id)
    return PublishResponse(**result.to_dict())


@router.post("/{reservation_id}/cancel", response_model=PublishResponse)
@limiter.limit(get_rate_limit("publish"))
def cancel_reservation(
    request: Request,
    reservation_id: str,
    db: Session = Depends(get_db),
    client: PMSClient = Depends(pms_client_dependency),
):
    """Free the nights and cancel the PMS copy, if any."""
    result = ReservationPublisher(db, client).cancel(reservation_id)
    return PublishResponse(**result.to_dict())
