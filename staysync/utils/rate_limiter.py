"""
API Rate Limiter Configuration

Uses Redis storage when REDIS_URL is configured (multiple instances),
otherwise in-memory storage.
"""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    storage_uri = settings.redis_url or "memory://"
    logger.info(f"API rate limiter storage: {storage_uri.split('@')[-1]}")
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=storage_uri,
        default_limits=["100/minute"],
    )


limiter = create_limiter()


RATE_LIMITS = {
    # Public, unauthenticated
    "quote": "60/minute",
    "calendar_get": "120/minute",

    # Operator actions hitting the PMS
    "sync": "10/minute",
    "publish": "30/minute",

    # Webhooks - higher limits for integrations
    "webhook": "300/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
