from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./staysync.db",
        alias="DATABASE_URL"
    )

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        alias="ALLOWED_ORIGINS"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Optional shared storage for API rate limiting (memory:// when unset)
    redis_url: str = Field(default="", alias="REDIS_URL")

    # ==============================================
    # PMS Integration Settings (Server-Side Only!)
    # ==============================================
    pms_base_url: str = Field(default="https://api.boomnow.com", alias="PMS_BASE_URL")
    pms_client_id: str = Field(default="", alias="PMS_CLIENT_ID")
    pms_client_secret: str = Field(default="", alias="PMS_CLIENT_SECRET")

    # Webhook secret for validating incoming webhooks
    pms_webhook_secret: str = Field(default="", alias="PMS_WEBHOOK_SECRET")

    # HTTP timeout for PMS requests; a timed-out call is a failure, never success
    pms_timeout_seconds: float = Field(default=20.0, alias="PMS_TIMEOUT_SECONDS")

    # Retries apply to idempotent reads only
    pms_max_retries: int = Field(default=3, alias="PMS_MAX_RETRIES")

    # Declared unit of PMS prices: "major", "minor" or empty (magnitude heuristic)
    pms_price_unit: str = Field(default="", alias="PMS_PRICE_UNIT")

    # Values above these thresholds are assumed to already be in minor units
    price_minor_unit_threshold: int = Field(default=10_000, alias="PRICE_MINOR_UNIT_THRESHOLD")
    fee_minor_unit_threshold: int = Field(default=1_000, alias="FEE_MINOR_UNIT_THRESHOLD")
    minor_units_per_major: int = Field(default=100, alias="MINOR_UNITS_PER_MAJOR")

    # ==============================================
    # Listing cache
    # ==============================================
    listing_cache_ttl_seconds: int = Field(default=300, alias="LISTING_CACHE_TTL_SECONDS")

    # ==============================================
    # Inbound sync
    # ==============================================
    # Sync horizon (days ahead to reconcile)
    sync_days_ahead: int = Field(default=365, alias="SYNC_DAYS_AHEAD")

    # Days per availability request
    sync_batch_days: int = Field(default=7, alias="SYNC_BATCH_DAYS")

    # Pause between PMS calls; properties are spaced by 5x this value
    rate_limit_delay_ms: int = Field(default=100, alias="RATE_LIMIT_DELAY_MS")

    # Shared token bucket across all reconciliation workers
    pms_requests_per_minute: int = Field(default=300, alias="PMS_REQUESTS_PER_MINUTE")

    # 1 = strictly sequential
    sync_max_workers: int = Field(default=1, alias="SYNC_MAX_WORKERS")

    # Scheduler (runs inside FastAPI process)
    sync_scheduler_enabled: bool = Field(default=False, alias="SYNC_SCHEDULER_ENABLED")
    sync_interval_minutes: int = Field(default=30, alias="SYNC_INTERVAL_MINUTES")

    # ==============================================
    # Pricing
    # ==============================================
    service_fee_rate: float = Field(default=0.10, alias="SERVICE_FEE_RATE")
    # "accommodation" or "accommodation_and_cleaning"
    service_fee_base: str = Field(default="accommodation", alias="SERVICE_FEE_BASE")
    tax_rate: float = Field(default=0.17, alias="TAX_RATE")
    # Length-of-stay discounts on accommodation; tiers stack, 0 disables
    weekly_discount_rate: float = Field(default=0.10, alias="WEEKLY_DISCOUNT_RATE")
    weekly_discount_min_nights: int = Field(default=7, alias="WEEKLY_DISCOUNT_MIN_NIGHTS")
    monthly_discount_rate: float = Field(default=0.20, alias="MONTHLY_DISCOUNT_RATE")
    monthly_discount_min_nights: int = Field(default=28, alias="MONTHLY_DISCOUNT_MIN_NIGHTS")
    default_currency: str = Field(default="ILS", alias="DEFAULT_CURRENCY")

    @property
    def has_pms_credentials(self) -> bool:
        """Check if PMS credentials are configured"""
        return bool(self.pms_client_id and self.pms_client_secret)

    @property
    def rate_limit_delay_seconds(self) -> float:
        return self.rate_limit_delay_ms / 1000.0

    @property
    def declared_price_unit(self) -> Optional[str]:
        unit = self.pms_price_unit.strip().lower()
        return unit or None

    @field_validator('pms_price_unit')
    @classmethod
    def validate_price_unit(cls, v: str) -> str:
        if v and v.strip().lower() not in ("major", "minor"):
            raise ValueError("PMS_PRICE_UNIT must be 'major', 'minor' or empty")
        return v

    @field_validator('service_fee_base')
    @classmethod
    def validate_service_fee_base(cls, v: str) -> str:
        if v not in ("accommodation", "accommodation_and_cleaning"):
            raise ValueError("SERVICE_FEE_BASE must be 'accommodation' or 'accommodation_and_cleaning'")
        return v

    @field_validator(
        'sync_batch_days', 'sync_max_workers', 'weekly_discount_min_nights', 'monthly_discount_min_nights'
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator('weekly_discount_rate', 'monthly_discount_rate')
    @classmethod
    def validate_discount_rate(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("discount rate must be in [0, 1)")
        return v

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
