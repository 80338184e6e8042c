"""
Pytest configuration and fixtures
"""
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-for-unit-tests-only-32-chars"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from subscriber_sync.db import Base, SessionLocal, engine
from subscriber_sync.db.models import (
    AuthMethod,
    BillingSubscription,
    BillingSubscriptionStatus,
    EspConnection,
    EspType,
)
from subscriber_sync.esp import ConnectorRegistry, EspConnector, Publication, SubscriberRecord
from subscriber_sync.exceptions import InvalidCredentialError
from subscriber_sync.services.encryption_service import EncryptionService
from subscriber_sync.services.oauth_refresh import TokenRefresher

TEST_USER_ID = "11111111-1111-1111-1111-111111111111"
# Billing period containing "now" so sync history written by tests falls inside it
PERIOD_START = datetime.utcnow().replace(microsecond=0) - timedelta(days=15)
PERIOD_END = PERIOD_START + timedelta(days=30)


class FakeConnector(EspConnector):
    """
    In-memory ESP connector

    subscribers maps a publication ID to its records, or to an exception raised
    when that publication is fetched.
    """

    supports_oauth = True

    def __init__(
        self,
        publications: Optional[List[str]] = None,
        subscribers: Optional[Dict[str, Union[List[SubscriberRecord], Exception]]] = None,
        valid_tokens: Optional[List[str]] = None,
    ):
        self.publications = publications or []
        self.subscribers = subscribers or {}
        self.valid_tokens = set(valid_tokens or [])
        self.calls: List[tuple] = []

    def _check_token(self, token: str) -> None:
        if self.valid_tokens and token not in self.valid_tokens:
            raise InvalidCredentialError("Invalid access token", remote_status=401)

    def _subscribers_for(self, publication_id: str) -> List[SubscriberRecord]:
        result = self.subscribers.get(publication_id, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    def validate_api_key(self, api_key, publication_id=None):
        return True

    def fetch_publications(self, api_key):
        self.calls.append(("fetch_publications", api_key))
        return [Publication(id=pub_id, name=f"List {pub_id}") for pub_id in self.publications]

    def fetch_subscribers(self, api_key, publication_id):
        self.calls.append(("fetch_subscribers", api_key, publication_id))
        return self._subscribers_for(publication_id)

    def get_subscriber_count(self, api_key, publication_id):
        return len(self._subscribers_for(publication_id))

    def validate_access_token(self, access_token):
        return access_token in self.valid_tokens

    def fetch_publications_with_oauth(self, access_token):
        self.calls.append(("fetch_publications_with_oauth", access_token))
        self._check_token(access_token)
        return [Publication(id=pub_id, name=f"List {pub_id}") for pub_id in self.publications]

    def fetch_subscribers_with_oauth(self, access_token, publication_id):
        self.calls.append(("fetch_subscribers_with_oauth", access_token, publication_id))
        self._check_token(access_token)
        return self._subscribers_for(publication_id)


class FakeTokenRefresher(TokenRefresher):
    """Stores a new encrypted access token on the connection"""

    def __init__(self, encryption: EncryptionService, new_token: str = "fresh-token", error: Exception = None):
        self.encryption = encryption
        self.new_token = new_token
        self.error = error
        self.refreshed: List[str] = []

    def refresh_token(self, connection):
        self.refreshed.append(connection.id)
        if self.error is not None:
            raise self.error
        connection.encrypted_access_token = self.encryption.encrypt(self.new_token)
        connection.token_expires_at = datetime.utcnow() + timedelta(hours=1)


class FakeStripeService:
    """Records Stripe calls instead of making them"""

    def __init__(self, subscriptions=None, customer_subscriptions=None, error: Exception = None):
        self.subscriptions = subscriptions or {}
        self.customer_subscriptions = customer_subscriptions or {}
        self.error = error
        self.usage_reports: List[tuple] = []

    def get_subscription(self, subscription_id):
        if self.error is not None:
            raise self.error
        return self.subscriptions[subscription_id]

    def list_subscriptions_for_customer(self, customer_id):
        if self.error is not None:
            raise self.error
        return list(self.customer_subscriptions.get(customer_id, []))

    def report_usage(self, subscription_item_id, quantity, timestamp=None):
        if self.error is not None:
            raise self.error
        self.usage_reports.append((subscription_item_id, quantity))
        return {"id": "mbur_test", "quantity": quantity}


def make_records(publication_id: str, count: int, offset: int = 0) -> List[SubscriberRecord]:
    """Subscriber records with stable IDs per publication"""
    return [
        SubscriberRecord(
            id=f"{publication_id}-{i}",
            email=f"user{i}@{publication_id.lower()}.example.com",
            status="active",
        )
        for i in range(offset, offset + count)
    ]


@pytest.fixture(scope="session")
def encryption():
    """Encryption service keyed for tests"""
    return EncryptionService("test-encryption-key-for-unit-tests-only-32-chars")


@pytest.fixture(scope="function")
def db_session():
    """Create a database session for each test on a fresh schema"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_connection(db_session, encryption):
    """Factory for ESP connections"""

    def _make(
        publication_ids=None,
        auth_method=AuthMethod.API_KEY,
        esp_type=EspType.BEEHIIV,
        user_id=TEST_USER_ID,
        api_key="api-key-123",
        access_token="stale-token",
        **kwargs,
    ) -> EspConnection:
        connection = EspConnection(
            user_id=user_id,
            esp_type=esp_type.value if isinstance(esp_type, EspType) else esp_type,
            auth_method=auth_method.value,
            publication_ids=publication_ids,
            **kwargs,
        )
        if auth_method == AuthMethod.OAUTH:
            connection.encrypted_access_token = encryption.encrypt(access_token) if access_token else None
            connection.encrypted_refresh_token = encryption.encrypt("refresh-token")
        elif api_key:
            connection.encrypted_api_key = encryption.encrypt(api_key)
        db_session.add(connection)
        db_session.commit()
        db_session.refresh(connection)
        return connection

    return _make


@pytest.fixture
def make_billing_subscription(db_session):
    """Factory for billing subscriptions with a cached current period"""

    def _make(
        user_id=TEST_USER_ID,
        status=BillingSubscriptionStatus.ACTIVE,
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        **kwargs,
    ) -> BillingSubscription:
        kwargs.setdefault("stripe_customer_id", "cus_test123")
        kwargs.setdefault("stripe_subscription_id", "sub_test123")
        kwargs.setdefault("stripe_subscription_item_id", "si_test123")
        subscription = BillingSubscription(
            user_id=user_id,
            status=status.value,
            current_period_start=period_start,
            current_period_end=period_end,
            **kwargs,
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _make


@pytest.fixture
def registry_for():
    """Build a registry serving one connector for the default ESP type"""

    def _make(connector: EspConnector, esp_type=EspType.BEEHIIV) -> ConnectorRegistry:
        return ConnectorRegistry({esp_type: connector})

    return _make
