import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from . import __version__
from .config import settings
from .database import create_tables
from .errors import (
    SyncError,
    SourceUnavailable,
    ListingNotFound,
    NotMapped,
    InvalidRange,
    ReservationNotFound,
    ConflictLocalReservationWins,
    DatesUnavailable,
    PMSRequestError,
)
from .services.pms_client import get_pms_client
from .services.sync_scheduler import start_sync_scheduler, stop_sync_scheduler
from .utils.logging_config import setup_logging, get_logger, set_request_context, clear_request_context
from .utils.rate_limiter import limiter

from .routers import quote, calendar_sync, reservations, audit, webhooks, health

logger = logging.getLogger(__name__)
request_logger = get_logger("staysync.requests")


# SyncError subclass -> (HTTP status, public error code)
ERROR_RESPONSES = {
    InvalidRange: (400, "INVALID_RANGE"),
    DatesUnavailable: (400, "DATES_UNAVAILABLE"),
    ListingNotFound: (404, "LISTING_NOT_FOUND"),
    NotMapped: (404, "NOT_MAPPED"),
    ReservationNotFound: (404, "RESERVATION_NOT_FOUND"),
    ConflictLocalReservationWins: (409, "CONFLICT_LOCAL_RESERVATION_WINS"),
    PMSRequestError: (502, "PMS_REQUEST_ERROR"),
    SourceUnavailable: (503, "UNAVAILABLE"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    logger.info(f"Starting staysync {__version__} ({settings.environment})")
    logger.info(f"CORS origins: {settings.cors_origins}")

    create_tables()

    if not settings.has_pms_credentials:
        logger.warning("PMS credentials not configured; quotes and syncs will report UNAVAILABLE")

    if settings.sync_scheduler_enabled:
        start_sync_scheduler()
    else:
        logger.info("Sync scheduler disabled (SYNC_SCHEDULER_ENABLED=false)")

    yield

    logger.info("Shutting down staysync...")
    stop_sync_scheduler()
    get_pms_client().close()


app = FastAPI(
    title="StaySync API",
    description="Property availability and pricing synchronization with an external PMS",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiter state
app.state.limiter = limiter


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id, request.headers.get("X-Organization-ID"))
        start = time.time()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            request_logger.api_request(
                request.method, request.url.path, response.status_code, (time.time() - start) * 1000
            )
            return response
        finally:
            clear_request_context()


app.add_middleware(RequestIdMiddleware)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    # exc.status_code is the upstream PMS status, not ours
    status_code, code = 500, exc.code.upper()
    for error_type, mapped in ERROR_RESPONSES.items():
        if isinstance(exc, error_type):
            status_code, code = mapped
            break

    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return error_response(status_code, code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, "RATE_LIMITED", "Too many requests, try again later")


app.include_router(quote.router)
app.include_router(calendar_sync.router)
app.include_router(reservations.router)
app.include_router(audit.router)
app.include_router(webhooks.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "message": "StaySync API",
        "version": __version__,
        "docs": "/docs",
        "status": "running",
    }
