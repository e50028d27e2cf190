import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.sync import HealthResponse
from ..services.listing_cache import ListingCache
from ..services.pms_client import PMSClient
from ..services.sync_scheduler import get_scheduler_status
from ..utils.dependencies import pms_client_dependency, listing_cache_dependency

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check(
    deep: bool = Query(False, description="Also authenticate against the PMS"),
    db: Session = Depends(get_db),
    client: PMSClient = Depends(pms_client_dependency),
    cache: ListingCache = Depends(listing_cache_dependency),
):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unreachable: {e}")
        database = "error"

    pms = client.health_check() if deep else {"configured": client.is_enabled()}

    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        database=database,
        pms=pms,
        listing_cache=cache.stats(),
        scheduler=get_scheduler_status(),
    )
