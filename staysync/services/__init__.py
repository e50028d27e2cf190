# Services package
from .audit_service import AuditService
from .calendar_store import CalendarStore
from .pms_client import PMSClient, get_pms_client
from .listing_cache import ListingCache, ListingSnapshot, get_listing_cache
from .pricing_engine import PricingEngine, PricingQuote
from .availability_reconciler import AvailabilityReconciler, SyncResult
from .reservation_publisher import ReservationPublisher, PublishResult
from .sync_orchestrator import SyncOrchestrator, BulkSyncResult
from .webhook_handler import PMSWebhookHandler

__all__ = [
    "AuditService",
    "CalendarStore",
    "PMSClient", "get_pms_client",
    "ListingCache", "ListingSnapshot", "get_listing_cache",
    "PricingEngine", "PricingQuote",
    "AvailabilityReconciler", "SyncResult",
    "ReservationPublisher", "PublishResult",
    "SyncOrchestrator", "BulkSyncResult",
    "PMSWebhookHandler",
]
