"""
PMS Webhook Receiver

Real-time reservation events from the PMS (OTA bookings, modifications,
cancellations). Signature checked with HMAC-SHA256 when
PMS_WEBHOOK_SECRET is configured.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..schemas.webhook import PMSWebhookPayload, WebhookResponse
from ..services.listing_cache import ListingCache
from ..services.webhook_handler import PMSWebhookHandler, verify_webhook_signature
from ..utils.dependencies import listing_cache_dependency, get_request_id
from ..utils.rate_limiter import limiter, get_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


@router.post("/pms", response_model=WebhookResponse)
@limiter.limit(get_rate_limit("webhook"))
async def pms_webhook(
    request: Request,
    x_pms_signature: Optional[str] = Header(None, alias="X-PMS-Signature"),
    db: Session = Depends(get_db),
    cache: ListingCache = Depends(listing_cache_dependency),
):
    request_id = get_request_id(request)
    body = await request.body()

    if not verify_webhook_signature(body, x_pms_signature, settings.pms_webhook_secret):
        logger.warning(f"[{request_id}] PMS webhook rejected: invalid signature")
        return _error(401, "INVALID_SIGNATURE", "Invalid webhook signature")

    try:
        payload = PMSWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"[{request_id}] PMS webhook rejected: {e.error_count()} validation errors")
        return _error(400, "VALIDATION_ERROR", "Malformed webhook payload")

    logger.info(f"[{request_id}] PMS webhook {payload.event} listing={payload.data.listing_id}")
    return PMSWebhookHandler(db, cache=cache).handle(payload)
