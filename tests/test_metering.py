"""
Tests for best-effort usage reporting
"""
from decimal import Decimal

import pytest

from conftest import PERIOD_END, PERIOD_START, TEST_USER_ID, FakeStripeService
from subscriber_sync.exceptions import RateLimitedError
from subscriber_sync.services.billing_usage_service import UsageSnapshot
from subscriber_sync.services.metering import MeteringReporter


def snapshot(meter_units):
    return UsageSnapshot(
        user_id=TEST_USER_ID,
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        total_subscriber_count=meter_units * 10000,
        max_subscriber_count=meter_units * 10000,
        calculated_amount=Decimal("5.00"),
        meter_units=meter_units,
    )


class TestMeteringReporter:
    """Test usage reporting to the Stripe meter"""

    def test_reports_units(self, db_session, make_billing_subscription):
        make_billing_subscription()
        stripe_service = FakeStripeService()

        reported = MeteringReporter(db_session, stripe_service).report_usage_safely(TEST_USER_ID, snapshot(3))

        assert reported == 3
        assert stripe_service.usage_reports == [("si_test123", 3)]

    @pytest.mark.parametrize("value", [None, 0])
    def test_nothing_to_report(self, db_session, make_billing_subscription, value):
        make_billing_subscription()
        stripe_service = FakeStripeService()
        usage = snapshot(value) if value is not None else None

        assert MeteringReporter(db_session, stripe_service).report_usage_safely(TEST_USER_ID, usage) == 0
        assert stripe_service.usage_reports == []

    def test_no_stripe_service(self, db_session, make_billing_subscription):
        make_billing_subscription()

        assert MeteringReporter(db_session, None).report_usage_safely(TEST_USER_ID, snapshot(2)) == 0

    def test_no_subscription_item(self, db_session, make_billing_subscription):
        make_billing_subscription(stripe_subscription_item_id=None)
        stripe_service = FakeStripeService()

        assert MeteringReporter(db_session, stripe_service).report_usage_safely(TEST_USER_ID, snapshot(2)) == 0
        assert stripe_service.usage_reports == []

    def test_stripe_failure_is_swallowed(self, db_session, make_billing_subscription):
        make_billing_subscription()
        stripe_service = FakeStripeService(error=RateLimitedError("slow down", remote_status=429))

        assert MeteringReporter(db_session, stripe_service).report_usage_safely(TEST_USER_ID, snapshot(2)) == 0
