"""
Metering reporter - forwards computed usage to the Stripe meter
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from .billing_subscription_service import BillingSubscriptionService
from .billing_usage_service import UsageSnapshot
from .stripe_service import StripeService

logger = logging.getLogger(__name__)


class MeteringReporter:
    """Best-effort usage reporting; never fails the caller"""

    def __init__(
        self,
        db: Session,
        stripe_service: Optional[StripeService],
        subscription_service: Optional[BillingSubscriptionService] = None,
    ):
        self.db = db
        self.stripe_service = stripe_service
        self.subscription_service = subscription_service or BillingSubscriptionService(db)

    def report_usage_safely(self, user_id: str, snapshot: Optional[UsageSnapshot]) -> int:
        """
        Report the snapshot's meter units for the user's subscription item

        Returns:
            Units reported, or 0 when nothing was reported
        """
        if snapshot is None or snapshot.meter_units <= 0:
            return 0
        if self.stripe_service is None:
            logger.debug(f"Stripe not configured; skipping usage report for user {user_id}")
            return 0

        try:
            subscription = self.subscription_service.find_by_user_id(user_id)
            if subscription is None or not subscription.stripe_subscription_item_id:
                logger.debug(f"User {user_id} has no metered subscription item; skipping usage report")
                return 0

            self.stripe_service.report_usage(
                subscription.stripe_subscription_item_id,
                snapshot.meter_units,
            )
        except Exception as e:
            logger.error(f"Failed to report usage to Stripe meter for user {user_id}: {e}", exc_info=True)
            return 0

        logger.info(f"Reported {snapshot.meter_units} units to Stripe meter for user {user_id}")
        return snapshot.meter_units
