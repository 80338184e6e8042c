"""
Tests for billing calculation
"""
from decimal import Decimal

import pytest

from subscriber_sync.services.billing_calculation import BillingCalculationService


class TestBillingCalculation:
    """Test tiered pricing and meter units"""

    def setup_method(self):
        """Setup test"""
        self.calculator = BillingCalculationService(
            base_price=Decimal("5.00"),
            base_tier_size=10000,
            additional_tier_price=Decimal("1.00"),
            additional_tier_size=10000,
            meter_unit_size=10000,
        )

    @pytest.mark.parametrize("total, units", [(0, 0), (1, 1), (10000, 1), (10001, 2), (25000, 3), (-5, 0)])
    def test_meter_units(self, total, units):
        assert self.calculator.calculate_meter_units(total) == units

    @pytest.mark.parametrize("count, amount", [
        (0, "0.00"),
        (1, "5.00"),
        (5000, "5.00"),
        (10000, "5.00"),
        (10001, "6.00"),
        (15000, "6.00"),
        (20001, "7.00"),
        (100000, "14.00"),
    ])
    def test_amount_tiers(self, count, amount):
        assert self.calculator.calculate_amount(count) == Decimal(amount)

    def test_amount_is_monotonic(self):
        amounts = [self.calculator.calculate_amount(count) for count in range(0, 60001, 2500)]
        assert amounts == sorted(amounts)

    def test_defaults_from_config(self):
        calculator = BillingCalculationService()
        assert calculator.meter_unit_size == 10000
        assert calculator.calculate_amount(15000) == Decimal("6.00")
