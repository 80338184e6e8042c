"""
Database module for Subscriber Sync
"""
from .base import Base
from .engine import engine, SessionLocal, get_db
from .models import (
    EspConnection,
    Subscriber,
    SyncHistory,
    BillingSubscription,
    BillingUsage,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "Base",
    "EspConnection",
    "Subscriber",
    "SyncHistory",
    "BillingSubscription",
    "BillingUsage",
]
