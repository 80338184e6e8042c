"""
Sync, usage and billing services
"""
from .billing_calculation import BillingCalculationService
from .billing_subscription_service import BillingSubscriptionService
from .billing_usage_service import BillingUsageService, UsageSnapshot
from .encryption_service import EncryptionService, get_encryption_service, mask_email
from .metering import MeteringReporter
from .oauth_refresh import AttemptState, OAuthRefreshGate, TokenRefresher
from .stripe_service import StripeService, get_stripe_service
from .subscriber_sync_service import PublicationSyncResult, SubscriberSyncService, SyncResult

__all__ = [
    "BillingCalculationService",
    "BillingSubscriptionService",
    "BillingUsageService",
    "UsageSnapshot",
    "EncryptionService",
    "get_encryption_service",
    "mask_email",
    "MeteringReporter",
    "AttemptState",
    "OAuthRefreshGate",
    "TokenRefresher",
    "StripeService",
    "get_stripe_service",
    "PublicationSyncResult",
    "SubscriberSyncService",
    "SyncResult",
]
