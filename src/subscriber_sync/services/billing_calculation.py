"""
Billing calculation - pricing and meter unit conversion
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..config import config


class BillingCalculationService:
    """
    Tiered pricing on peak subscriber count

    Default pricing: $5 for the first 10,000 subscribers, then $1 per additional
    started block of 10,000.

    - 5,000 subscribers = $5
    - 15,000 subscribers = $6
    - 100,000 subscribers = $14
    """

    def __init__(
        self,
        base_price: Optional[Decimal] = None,
        base_tier_size: Optional[int] = None,
        additional_tier_price: Optional[Decimal] = None,
        additional_tier_size: Optional[int] = None,
        meter_unit_size: Optional[int] = None,
    ):
        self.base_price = base_price if base_price is not None else config.BASE_PRICE
        self.base_tier_size = base_tier_size or config.BASE_TIER_SIZE
        self.additional_tier_price = (
            additional_tier_price if additional_tier_price is not None else config.ADDITIONAL_TIER_PRICE
        )
        self.additional_tier_size = additional_tier_size or config.ADDITIONAL_TIER_SIZE
        self.meter_unit_size = meter_unit_size or config.METER_UNIT_SIZE

    def calculate_amount(self, subscriber_count: int) -> Decimal:
        """Amount in dollars for a peak subscriber count (0 for no subscribers)"""
        if subscriber_count <= 0:
            return Decimal("0.00")

        amount = Decimal(self.base_price)
        if subscriber_count > self.base_tier_size:
            beyond_base = subscriber_count - self.base_tier_size
            additional_tiers = _ceil_div(beyond_base, self.additional_tier_size)
            amount += additional_tiers * Decimal(self.additional_tier_price)

        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def calculate_meter_units(self, total_subscriber_count: int) -> int:
        """ceil(total / METER_UNIT_SIZE); zero or negative totals are 0 units"""
        if total_subscriber_count <= 0:
            return 0
        return _ceil_div(total_subscriber_count, self.meter_unit_size)


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)
