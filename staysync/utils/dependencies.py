"""
FastAPI dependencies for the process-wide PMS collaborators.

Overridden in tests through app.dependency_overrides.
"""

from fastapi import Depends, Request

from ..services.listing_cache import ListingCache, get_listing_cache
from ..services.pms_client import PMSClient, get_pms_client
from ..services.pricing_engine import PricingEngine
from ..services.sync_orchestrator import get_shared_rate_limiter
from ..utils.token_bucket import TokenBucketRateLimiter


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "no-request-id")


def pms_client_dependency() -> PMSClient:
    return get_pms_client()


def listing_cache_dependency() -> ListingCache:
    return get_listing_cache()


def rate_limiter_dependency() -> TokenBucketRateLimiter:
    return get_shared_rate_limiter()


def pricing_engine_dependency(cache: ListingCache = Depends(listing_cache_dependency)) -> PricingEngine:
    return PricingEngine(cache)
