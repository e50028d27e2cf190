"""
PMS API Client

Wrapper for the external Property Management System API that handles:
- OAuth2 client-credentials tokens, cached until shortly before expiry
- Request logging with request_id
- Error handling with structured mapping (ERROR_MAP)
- Exponential backoff for idempotent reads only

Writes (reservation create/cancel) are never retried here: a timed-out POST
may have been applied upstream, so the caller decides.
"""

import time
import threading
import logging
from datetime import date
from typing import Callable, Dict, Optional, Any
from dataclasses import dataclass

import httpx

from ..config import settings
from ..errors import (
    SourceUnavailable,
    ListingNotFound,
    DatesUnavailable,
    PMSRequestError,
)

logger = logging.getLogger(__name__)

# Refresh tokens this many seconds before the PMS says they expire
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass
class PMSResponse:
    """Wrapper for PMS API responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    should_retry: bool = False
    timed_out: bool = False


@dataclass
class PMSError:
    """Structured error from the PMS API"""
    code: str
    message: str
    status_code: int
    retryable: bool = False


ERROR_MAP = {
    400: PMSError("bad_request", "Invalid request", 400, False),
    401: PMSError("unauthorized", "Invalid or expired access token", 401, False),
    403: PMSError("forbidden", "Access denied to this resource", 403, False),
    404: PMSError("not_found", "Resource not found", 404, False),
    409: PMSError("conflict", "Conflicting reservation", 409, False),
    422: PMSError("validation_error", "Invalid request data", 422, False),
    429: PMSError("rate_limited", "Too many requests", 429, True),
    500: PMSError("server_error", "PMS server error", 500, True),
    502: PMSError("bad_gateway", "PMS gateway error", 502, True),
    503: PMSError("service_unavailable", "PMS service unavailable", 503, True),
    504: PMSError("gateway_timeout", "PMS gateway timeout", 504, True),
}

SENSITIVE_KEYS = ("secret", "token", "password", "authorization", "email", "phone")


class PMSClient:
    """
    Client for PMS operations.

    One instance is shared by a process: the token cache and the underlying
    httpx connection pool are thread-safe.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        request_id: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.pms_base_url).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.pms_client_id
        self.client_secret = client_secret if client_secret is not None else settings.pms_client_secret
        self.timeout = timeout or settings.pms_timeout_seconds
        self.request_id = request_id or "no-request-id"

        # Retry configuration (GET only)
        self.max_retries = max(1, max_retries or settings.pms_max_retries)
        self.base_delay = 1.0
        self.max_delay = 30.0

        self._sleep = sleep
        self._clock = clock
        self._http = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = threading.Lock()

    def is_enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def close(self):
        self._http.close()

    # ==================
    # Auth
    # ==================

    def _get_access_token(self, force_refresh: bool = False) -> str:
        with self._token_lock:
            if not force_refresh and self._access_token and self._clock() < self._token_expires_at:
                return self._access_token

            if not self.is_enabled():
                raise SourceUnavailable("PMS credentials not configured", code="pms_not_configured")

            try:
                response = self._http.post("/oauth/token", json={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                })
            except httpx.TimeoutException as e:
                raise SourceUnavailable(f"PMS auth timed out: {e}", code="timeout")
            except httpx.HTTPError as e:
                raise SourceUnavailable(f"PMS auth failed: {e}")

            if response.status_code >= 500:
                raise SourceUnavailable(f"PMS auth failed: {response.status_code}", status_code=response.status_code)
            if response.status_code != 200:
                raise PMSRequestError(
                    f"PMS auth failed: {response.status_code}",
                    code="unauthorized",
                    status_code=response.status_code,
                )

            data = response.json()
            expires_in = int(data.get("expires_in") or 3600)
            self._access_token = data["access_token"]
            self._token_expires_at = self._clock() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
            logger.info(f"[{self.request_id}] PMS access token refreshed (expires in {expires_in}s)")
            return self._access_token

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._get_access_token()}",
            "User-Agent": "StaySync/1.0",
            "X-Request-ID": self.request_id,
        }

    # ==================
    # Transport
    # ==================

    def _sanitize_payload(self, payload: Optional[Dict]) -> Optional[Dict]:
        """Remove sensitive data from payload before logging"""
        if not payload:
            return None

        def sanitize_dict(d: Dict) -> Dict:
            result = {}
            for k, v in d.items():
                if any(sk in k.lower() for sk in SENSITIVE_KEYS):
                    result[k] = "[REDACTED]"
                elif isinstance(v, dict):
                    result[k] = sanitize_dict(v)
                else:
                    result[k] = v
            return result

        return sanitize_dict(payload)

    def _map_error(self, status_code: int, response_data: Optional[Any]) -> PMSError:
        """Map HTTP status code to structured error"""
        message = None
        if isinstance(response_data, dict):
            err = response_data.get("error")
            if isinstance(err, dict):
                message = err.get("message")
            elif isinstance(err, str):
                message = err
            message = message or response_data.get("message")

        if status_code in ERROR_MAP:
            error = ERROR_MAP[status_code]
            if message:
                return PMSError(error.code, message, status_code, error.retryable)
            return error

        if status_code >= 500:
            return PMSError("server_error", message or f"Server error: {status_code}", status_code, True)

        return PMSError("unknown", message or f"Unknown error: {status_code}", status_code, False)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> PMSResponse:
        """
        Make an HTTP request to the PMS API.

        GET requests are retried on 429/5xx/transport errors with exponential
        backoff; every other method gets exactly one attempt.
        """
        attempts = self.max_retries if method.upper() == "GET" else 1
        start_time = time.time()
        last_response: Optional[PMSResponse] = None

        if payload:
            logger.debug(f"[{self.request_id}] {method} {endpoint} payload={self._sanitize_payload(payload)}")

        for attempt in range(attempts):
            if attempt > 0:
                delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
                logger.warning(
                    f"[{self.request_id}] Retrying {method} {endpoint} in {delay}s "
                    f"(attempt {attempt + 1}/{attempts}): {last_response.error}"
                )
                self._sleep(delay)

            try:
                response = self._http.request(
                    method, endpoint, headers=self._get_headers(), json=payload, params=params
                )
            except httpx.TimeoutException as e:
                last_response = PMSResponse(
                    success=False, status_code=0, error=f"Timeout: {e}",
                    error_code="timeout", should_retry=True, timed_out=True,
                )
                continue
            except httpx.HTTPError as e:
                last_response = PMSResponse(
                    success=False, status_code=0, error=f"Connection error: {e}",
                    error_code="connection_error", should_retry=True,
                )
                continue

            duration_ms = int((time.time() - start_time) * 1000)
            status_code = response.status_code

            try:
                data = response.json()
            except ValueError:
                data = None

            if 200 <= status_code < 300:
                logger.debug(f"[{self.request_id}] {method} {endpoint} -> {status_code} ({duration_ms}ms)")
                return PMSResponse(success=True, status_code=status_code, data=data)

            # Token revoked upstream; next call fetches a fresh one
            if status_code == 401:
                with self._token_lock:
                    self._access_token = None

            error = self._map_error(status_code, data if data is not None else {"message": response.text[:500]})
            last_response = PMSResponse(
                success=False,
                status_code=status_code,
                data=data,
                error=error.message,
                error_code=error.code,
                should_retry=error.retryable,
            )
            logger.warning(
                f"[{self.request_id}] {method} {endpoint} -> {status_code} {error.code}: {error.message} "
                f"({duration_ms}ms)"
            )
            if not error.retryable:
                return last_response

        return last_response

    def _raise_for_failure(self, response: PMSResponse, what: str):
        """Translate a failed PMSResponse into the sync error taxonomy."""
        if response.timed_out:
            raise SourceUnavailable(f"{what}: {response.error}", code="timeout")
        if response.should_retry:
            raise SourceUnavailable(
                f"{what}: {response.error}",
                code=response.error_code or SourceUnavailable.code,
                status_code=response.status_code or None,
            )
        raise PMSRequestError(
            f"{what}: {response.error}",
            code=response.error_code or PMSRequestError.code,
            status_code=response.status_code,
        )

    @staticmethod
    def _unwrap(data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data

    # ==================
    # Listings
    # ==================

    def get_listing(self, listing_id: str) -> Dict:
        """Fetch a listing with its days_rates table and fee configuration."""
        response = self._make_request("GET", f"/v1/listings/{listing_id}")
        if not response.success:
            if response.status_code == 404:
                raise ListingNotFound(f"Listing {listing_id} not found on PMS", status_code=404)
            self._raise_for_failure(response, f"Get listing {listing_id}")

        data = self._unwrap(response.data)
        if not isinstance(data, dict):
            raise ListingNotFound(f"Listing {listing_id} returned no usable payload")
        return data

    def get_pricing(self, listing_id: str, check_in: date, check_out: date, guests: int = 1) -> Dict:
        """
        Price a stay. Doubles as an availability check: the PMS answers
        unbookable ranges with 400 / "not available", raised as DatesUnavailable.
        """
        response = self._make_request(
            "GET",
            f"/v1/listings/{listing_id}/pricing",
            params={
                "check_in": check_in.isoformat(),
                "check_out": check_out.isoformat(),
                "guests": guests,
            },
        )
        if response.success:
            return self._unwrap(response.data) or {}

        message = (response.error or "").lower()
        if response.status_code == 400 or (400 <= response.status_code < 500 and "not available" in message):
            raise DatesUnavailable(
                f"Listing {listing_id} not available {check_in} -> {check_out}",
                status_code=response.status_code,
            )
        if response.status_code == 404:
            raise ListingNotFound(f"Listing {listing_id} not found on PMS", status_code=404)
        self._raise_for_failure(response, f"Pricing {listing_id} {check_in}->{check_out}")

    # ==================
    # Reservations
    # ==================

    def create_reservation(
        self,
        listing_id: str,
        check_in: date,
        check_out: date,
        adults: int,
        children: int = 0,
        first_name: str = "",
        last_name: str = "",
        email: str = "",
        phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> str:
        """
        Create a reservation on the PMS. Single attempt.

        Returns the PMS reservation id.
        """
        payload = {
            "listing_id": listing_id,
            "check_in": check_in.isoformat(),
            "check_out": check_out.isoformat(),
            "adults": adults,
            "children": children,
            "guest": {
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
            },
        }
        if phone:
            payload["guest"]["phone"] = phone
        if notes:
            payload["notes"] = notes

        response = self._make_request("POST", "/v1/reservations", payload=payload)
        if not response.success:
            self._raise_for_failure(response, f"Create reservation on listing {listing_id}")

        data = self._unwrap(response.data) or {}
        reservation = data.get("reservation") if isinstance(data.get("reservation"), dict) else data
        external_id = reservation.get("id") or reservation.get("reservation_id")
        if not external_id:
            raise PMSRequestError("PMS accepted the reservation but returned no id", code="missing_reservation_id")
        return str(external_id)

    def cancel_reservation(self, external_reservation_id: str) -> bool:
        """
        Cancel a reservation on the PMS. Single attempt.

        Returns False when the PMS no longer knows the reservation.
        """
        response = self._make_request("POST", f"/v1/reservations/{external_reservation_id}/cancel")
        if not response.success:
            if response.status_code == 404:
                logger.warning(f"Reservation {external_reservation_id} not found on PMS, nothing to cancel")
                return False
            self._raise_for_failure(response, f"Cancel reservation {external_reservation_id}")
        return True

    # ==================
    # Health
    # ==================

    def health_check(self) -> Dict[str, Any]:
        """Check credentials and connectivity without touching any listing."""
        if not self.is_enabled():
            return {"connected": False, "error": "PMS credentials not configured"}
        try:
            self._get_access_token(force_refresh=True)
        except (SourceUnavailable, PMSRequestError) as e:
            return {"connected": False, "error": str(e)}
        return {"connected": True}


_default_client: Optional[PMSClient] = None
_default_client_lock = threading.Lock()


def get_pms_client() -> PMSClient:
    """Process-wide client sharing the token cache and connection pool."""
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = PMSClient()
        return _default_client
