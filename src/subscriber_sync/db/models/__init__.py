"""
Database models for Subscriber Sync
"""
from .esp_connection import EspConnection, EspType, AuthMethod, EspConnectionStatus, EspSyncStatus
from .subscriber import Subscriber, SubscriberStatus, SyncHistory, SyncHistoryStatus
from .billing import BillingSubscription, BillingSubscriptionStatus, BillingUsage, BillingUsageStatus

__all__ = [
    "EspConnection",
    "EspType",
    "AuthMethod",
    "EspConnectionStatus",
    "EspSyncStatus",
    "Subscriber",
    "SubscriberStatus",
    "SyncHistory",
    "SyncHistoryStatus",
    "BillingSubscription",
    "BillingSubscriptionStatus",
    "BillingUsage",
    "BillingUsageStatus",
]
