"""
Tests for the subscriber sync service
"""
from unittest.mock import Mock

import pytest
from sqlalchemy import func, select

from conftest import FakeConnector, FakeStripeService, FakeTokenRefresher, make_records
from subscriber_sync.db.models import (
    AuthMethod,
    BillingUsage,
    EspType,
    Subscriber,
    SyncHistory,
    SyncHistoryStatus,
)
from subscriber_sync.esp import SubscriberRecord
from subscriber_sync.exceptions import (
    BadRequestError,
    ConfigurationError,
    InternalError,
    InvalidCredentialError,
    NotFoundError,
    ProviderServerError,
    ReconnectRequiredError,
)
from subscriber_sync.services.billing_usage_service import BillingUsageService
from subscriber_sync.services.metering import MeteringReporter
from subscriber_sync.services.subscriber_sync_service import SubscriberSyncService


class StaleSubscribersConnector(FakeConnector):
    """Lists publications with any token but rejects the stale token when fetching subscribers"""

    def fetch_subscribers_with_oauth(self, access_token, publication_id):
        if access_token == "stale-token":
            self.calls.append(("fetch_subscribers_with_oauth", access_token, publication_id))
            raise InvalidCredentialError("Invalid access token", remote_status=401)
        return super().fetch_subscribers_with_oauth(access_token, publication_id)


def history_rows(db_session, connection_id):
    return list(
        db_session.execute(
            select(SyncHistory)
            .where(SyncHistory.esp_connection_id == connection_id)
            .order_by(SyncHistory.started_at)
        ).scalars()
    )


def subscriber_count(db_session, connection_id):
    return db_session.execute(
        select(func.count()).select_from(Subscriber).where(Subscriber.esp_connection_id == connection_id)
    ).scalar_one()


@pytest.fixture
def build_service(db_session, encryption, registry_for):
    """Wire a sync service around a fake connector"""

    def _build(connector, token_refresher=None, stripe_service=None):
        return SubscriberSyncService(
            db_session,
            registry=registry_for(connector),
            encryption=encryption,
            token_refresher=token_refresher,
            usage_service=BillingUsageService(db_session, stripe_service=stripe_service),
            metering_reporter=MeteringReporter(db_session, stripe_service),
        )

    return _build


class TestPreflight:
    """Run-level failures raised before any publication is synced"""

    def test_connection_not_found(self, db_session, build_service):
        service = build_service(FakeConnector())

        with pytest.raises(NotFoundError):
            service.sync_subscribers("00000000-0000-0000-0000-000000000000")

    def test_unsupported_esp_type(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=["A"], esp_type=EspType.MAILCHIMP)
        service = build_service(FakeConnector(publications=["A"]))

        with pytest.raises(ConfigurationError) as exc_info:
            service.sync_subscribers(connection.id)

        assert isinstance(exc_info.value, InternalError)
        assert "mailchimp" in exc_info.value.message

    def test_no_lists_selected(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=[])
        service = build_service(FakeConnector(publications=["A"]))

        with pytest.raises(BadRequestError) as exc_info:
            service.sync_subscribers(connection.id)

        assert "No lists selected" in exc_info.value.message
        assert history_rows(db_session, connection.id) == []

    def test_missing_api_key(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=["A"], api_key=None)
        service = build_service(FakeConnector(publications=["A"]))

        with pytest.raises(ConfigurationError):
            service.sync_subscribers(connection.id)

    def test_stale_list_selection(self, db_session, build_service, make_connection):
        """Selected list missing remotely fails before any history row is written"""
        connection = make_connection(publication_ids=["X"])
        connector = FakeConnector(publications=["Y"], subscribers={"X": make_records("X", 2)})
        service = build_service(connector)

        with pytest.raises(BadRequestError) as exc_info:
            service.sync_subscribers(connection.id)

        assert exc_info.value.details["missing_publication_ids"] == ["X"]
        assert "X" in exc_info.value.message
        assert history_rows(db_session, connection.id) == []
        assert not any(call[0] == "fetch_subscribers" for call in connector.calls)

    def test_unexpected_error_wrapped(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=["A"])
        connector = FakeConnector(publications=["A"])
        connector.fetch_publications = Mock(side_effect=RuntimeError("boom"))
        service = build_service(connector)

        with pytest.raises(InternalError) as exc_info:
            service.sync_subscribers(connection.id)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.code == "INTERNAL_ERROR"


class TestSyncRun:
    """Per-publication behaviour"""

    def test_sync_persists_subscribers(self, db_session, build_service, make_connection, encryption):
        connection = make_connection(publication_ids=["A"])
        connector = FakeConnector(publications=["A"], subscribers={"A": make_records("A", 3)})

        result = build_service(connector).sync_subscribers(connection.id)

        assert [p.publication_id for p in result.succeeded] == ["A"]
        assert result.succeeded[0].subscriber_count == 3
        assert subscriber_count(db_session, connection.id) == 3

        subscriber = db_session.execute(
            select(Subscriber).where(Subscriber.external_id == "A-0")
        ).scalar_one()
        assert encryption.decrypt(subscriber.encrypted_email) == "user0@a.example.com"
        assert subscriber.masked_email == "u****@a.example.com"
        assert subscriber.publication_id == "A"
        assert subscriber.extra_metadata["publicationId"] == "A"

        rows = history_rows(db_session, connection.id)
        assert len(rows) == 1
        assert rows[0].status == SyncHistoryStatus.SUCCESS.value
        assert rows[0].completed_at is not None
        assert rows[0].subscriber_count == 3

    def test_legacy_single_publication(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=None, publication_id="legacy")
        connector = FakeConnector(publications=["legacy"], subscribers={"legacy": make_records("legacy", 2)})

        result = build_service(connector).sync_subscribers(connection.id)

        assert result.succeeded[0].publication_id == "legacy"
        assert subscriber_count(db_session, connection.id) == 2

    def test_sync_is_idempotent(self, db_session, build_service, make_connection):
        """Re-running with unchanged remote data reconciles rather than duplicates"""
        connection = make_connection(publication_ids=["A", "B"])
        connector = FakeConnector(
            publications=["A", "B"],
            subscribers={"A": make_records("A", 4), "B": make_records("B", 2)},
        )
        service = build_service(connector)

        service.sync_subscribers(connection.id)
        first_ids = set(db_session.execute(select(Subscriber.id)).scalars())
        service.sync_subscribers(connection.id)
        second_ids = set(db_session.execute(select(Subscriber.id)).scalars())

        assert subscriber_count(db_session, connection.id) == 6
        assert first_ids == second_ids
        assert len(history_rows(db_session, connection.id)) == 4

    def test_resync_updates_existing_rows(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=["A"])
        records = make_records("A", 1)
        connector = FakeConnector(publications=["A"], subscribers={"A": records})
        service = build_service(connector)
        service.sync_subscribers(connection.id)

        connector.subscribers["A"] = [
            SubscriberRecord(id="A-0", email="user0@a.example.com", status="unsubscribed", firstName="Ada")
        ]
        service.sync_subscribers(connection.id)

        db_session.expire_all()
        subscriber = db_session.execute(select(Subscriber)).scalar_one()
        assert subscriber.status == "unsubscribed"
        assert subscriber.first_name == "Ada"

    def test_partial_failure(self, db_session, build_service, make_connection):
        """A fails, B succeeds: run completes and history records both"""
        connection = make_connection(publication_ids=["A", "B"])
        connector = FakeConnector(
            publications=["A", "B"],
            subscribers={
                "A": ProviderServerError("upstream down", remote_status=503),
                "B": make_records("B", 2),
            },
        )

        result = build_service(connector).sync_subscribers(connection.id)

        assert result.is_partial
        assert [p.publication_id for p in result.failed] == ["A"]
        assert "upstream down" in result.failed[0].error

        rows = {row.publication_id: row for row in history_rows(db_session, connection.id)}
        assert rows["A"].status == SyncHistoryStatus.FAILED.value
        assert "upstream down" in rows["A"].error_message
        assert rows["A"].completed_at is not None
        assert rows["B"].status == SyncHistoryStatus.SUCCESS.value
        assert rows["B"].subscriber_count == 2
        assert subscriber_count(db_session, connection.id) == 2

    def test_all_publications_fail(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=["A", "B"])
        connector = FakeConnector(
            publications=["A", "B"],
            subscribers={
                "A": ProviderServerError("A down", remote_status=500),
                "B": RuntimeError("B exploded"),
            },
        )

        with pytest.raises(InternalError) as exc_info:
            build_service(connector).sync_subscribers(connection.id)

        assert "All publications failed" in exc_info.value.message
        rows = history_rows(db_session, connection.id)
        assert len(rows) == 2
        assert all(row.status == SyncHistoryStatus.FAILED.value for row in rows)

    def test_bad_subscriber_is_skipped(self, db_session, build_service, make_connection):
        """A record without an email does not abort the publication"""
        connection = make_connection(publication_ids=["A"])
        records = make_records("A", 2) + [SubscriberRecord(id="A-bad", email=None)]
        connector = FakeConnector(publications=["A"], subscribers={"A": records})

        result = build_service(connector).sync_subscribers(connection.id)

        assert result.succeeded[0].subscriber_count == 2
        assert result.succeeded[0].skipped_records == 1
        assert history_rows(db_session, connection.id)[0].subscriber_count == 2
        assert subscriber_count(db_session, connection.id) == 2


class TestOAuthSync:
    """OAuth connections go through the refresh gate"""

    def test_refresh_once_then_success(self, db_session, build_service, make_connection, encryption):
        connection = make_connection(publication_ids=["A"], auth_method=AuthMethod.OAUTH)
        connector = FakeConnector(
            publications=["A"],
            subscribers={"A": make_records("A", 2)},
            valid_tokens=["fresh-token"],
        )
        refresher = FakeTokenRefresher(encryption, new_token="fresh-token")

        result = build_service(connector, token_refresher=refresher).sync_subscribers(connection.id)

        assert refresher.refreshed == [connection.id]
        assert result.succeeded[0].subscriber_count == 2
        assert ("fetch_subscribers_with_oauth", "fresh-token", "A") in connector.calls

    def test_refreshed_token_rejected(self, db_session, build_service, make_connection, encryption):
        connection = make_connection(publication_ids=["A"], auth_method=AuthMethod.OAUTH)
        connector = FakeConnector(publications=["A"], valid_tokens=["never-issued"])
        refresher = FakeTokenRefresher(encryption, new_token="also-rejected")

        with pytest.raises(ReconnectRequiredError):
            build_service(connector, token_refresher=refresher).sync_subscribers(connection.id)

        assert refresher.refreshed == [connection.id]
        assert history_rows(db_session, connection.id) == []

    def test_refreshed_token_used_by_later_publications(
        self, db_session, build_service, make_connection, encryption
    ):
        connection = make_connection(publication_ids=["A", "B"], auth_method=AuthMethod.OAUTH)
        connector = StaleSubscribersConnector(
            publications=["A", "B"],
            subscribers={"A": make_records("A", 2), "B": make_records("B", 3)},
        )
        refresher = FakeTokenRefresher(encryption, new_token="fresh-token")

        result = build_service(connector, token_refresher=refresher).sync_subscribers(connection.id)

        assert refresher.refreshed == [connection.id]
        assert [p.subscriber_count for p in result.succeeded] == [2, 3]
        subscriber_calls = [c for c in connector.calls if c[0] == "fetch_subscribers_with_oauth"]
        assert subscriber_calls == [
            ("fetch_subscribers_with_oauth", "stale-token", "A"),
            ("fetch_subscribers_with_oauth", "fresh-token", "A"),
            ("fetch_subscribers_with_oauth", "fresh-token", "B"),
        ]

    def test_reconnect_on_one_publication_continues_run(
        self, db_session, build_service, make_connection, encryption
    ):
        connection = make_connection(publication_ids=["A", "B"], auth_method=AuthMethod.OAUTH)
        connector = FakeConnector(
            publications=["A", "B"],
            subscribers={
                "A": InvalidCredentialError("Invalid access token", remote_status=401),
                "B": make_records("B", 3),
            },
        )
        refresher = FakeTokenRefresher(encryption, new_token="fresh-token")

        result = build_service(connector, token_refresher=refresher).sync_subscribers(connection.id)

        assert result.is_partial
        assert [p.publication_id for p in result.failed] == ["A"]
        assert result.succeeded[0].publication_id == "B"
        assert result.succeeded[0].subscriber_count == 3
        assert refresher.refreshed == [connection.id]
        statuses = {row.publication_id: row.status for row in history_rows(db_session, connection.id)}
        assert statuses == {"A": SyncHistoryStatus.FAILED.value, "B": SyncHistoryStatus.SUCCESS.value}

    def test_connector_without_oauth(self, db_session, build_service, make_connection, encryption):
        connection = make_connection(publication_ids=["A"], auth_method=AuthMethod.OAUTH)
        connector = FakeConnector(publications=["A"])
        connector.supports_oauth = False

        with pytest.raises(ConfigurationError):
            build_service(connector, token_refresher=FakeTokenRefresher(encryption)).sync_subscribers(connection.id)

    def test_missing_access_token(self, db_session, build_service, make_connection, encryption):
        connection = make_connection(publication_ids=["A"], auth_method=AuthMethod.OAUTH, access_token=None)

        with pytest.raises(ConfigurationError):
            build_service(
                FakeConnector(publications=["A"]), token_refresher=FakeTokenRefresher(encryption)
            ).sync_subscribers(connection.id)


class TestUsageAfterSync:
    """Usage is recomputed and metered after a run"""

    def test_usage_and_metering(self, db_session, build_service, make_connection, make_billing_subscription):
        make_billing_subscription()
        connection = make_connection(publication_ids=["A"])
        connector = FakeConnector(publications=["A"], subscribers={"A": make_records("A", 3)})
        stripe_service = FakeStripeService()

        result = build_service(connector, stripe_service=stripe_service).sync_subscribers(connection.id)

        assert result.usage.total_subscriber_count == 3
        assert result.usage.meter_units == 1
        assert result.units_reported == 1
        assert stripe_service.usage_reports == [("si_test123", 1)]

        usage = db_session.execute(select(BillingUsage)).scalar_one()
        assert usage.max_subscriber_count == 3

    def test_no_subscription_skips_usage(self, db_session, build_service, make_connection):
        connection = make_connection(publication_ids=["A"])
        connector = FakeConnector(publications=["A"], subscribers={"A": make_records("A", 1)})

        result = build_service(connector).sync_subscribers(connection.id)

        assert result.usage is None
        assert result.units_reported == 0

    def test_metering_failure_does_not_fail_sync(
        self, db_session, build_service, make_connection, make_billing_subscription
    ):
        make_billing_subscription()
        connection = make_connection(publication_ids=["A"])
        connector = FakeConnector(publications=["A"], subscribers={"A": make_records("A", 1)})
        stripe_service = FakeStripeService(error=RuntimeError("stripe unavailable"))

        result = build_service(connector, stripe_service=stripe_service).sync_subscribers(connection.id)

        assert result.succeeded
        assert result.units_reported == 0
