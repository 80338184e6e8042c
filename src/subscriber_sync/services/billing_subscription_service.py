"""
Billing subscription service - local mirror of Stripe subscriptions
"""
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from ..db.models import BillingSubscription, BillingSubscriptionStatus

logger = logging.getLogger(__name__)

STRIPE_STATUS_MAP = {
    "active": BillingSubscriptionStatus.ACTIVE,
    "canceled": BillingSubscriptionStatus.CANCELED,
    "past_due": BillingSubscriptionStatus.PAST_DUE,
    "unpaid": BillingSubscriptionStatus.PAST_DUE,
    "trialing": BillingSubscriptionStatus.TRIALING,
    "incomplete": BillingSubscriptionStatus.INCOMPLETE,
    "incomplete_expired": BillingSubscriptionStatus.INCOMPLETE_EXPIRED,
}


def from_epoch(value: Optional[int]) -> Optional[datetime]:
    """Stripe epoch seconds to naive UTC"""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def first_subscription_item(remote: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    items = remote.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else None


def subscription_period(remote: Mapping[str, Any]):
    """
    (start, end) of the current period of a remote subscription

    Newer Stripe API versions carry the period on the subscription item rather than
    on the subscription itself.
    """
    start = remote.get("current_period_start")
    end = remote.get("current_period_end")
    if start is None or end is None:
        item = first_subscription_item(remote)
        if item is not None:
            start = item.get("current_period_start")
            end = item.get("current_period_end")
    return from_epoch(start), from_epoch(end)


class BillingSubscriptionService:
    """Reads and mirrors Stripe subscriptions"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_user_id(self, user_id: str) -> Optional[BillingSubscription]:
        return self.db.query(BillingSubscription).filter(BillingSubscription.user_id == user_id).first()

    def find_by_stripe_customer_id(self, customer_id: str) -> Optional[BillingSubscription]:
        return self.db.query(BillingSubscription).filter(
            BillingSubscription.stripe_customer_id == customer_id
        ).first()

    def find_by_stripe_subscription_id(self, subscription_id: str) -> Optional[BillingSubscription]:
        return self.db.query(BillingSubscription).filter(
            BillingSubscription.stripe_subscription_id == subscription_id
        ).first()

    def has_active_subscription(self, user_id: str) -> bool:
        subscription = self.find_by_user_id(user_id)
        return subscription is not None and subscription.status in (
            BillingSubscriptionStatus.ACTIVE.value,
            BillingSubscriptionStatus.TRIALING.value,
        )

    def sync_from_stripe(
        self,
        remote: Mapping[str, Any],
        user_id: Optional[str] = None,
    ) -> BillingSubscription:
        """
        Create or update the local row from a Stripe subscription object

        Args:
            remote: Stripe subscription (StripeObject or plain dict)
            user_id: Owner of the subscription; required when no local row exists yet

        Returns:
            The committed BillingSubscription

        Raises:
            ValueError: no local row exists and user_id was not given
        """
        subscription = self.find_by_stripe_subscription_id(remote["id"])
        if subscription is None and user_id is not None:
            subscription = self.find_by_user_id(user_id)

        if subscription is None:
            if user_id is None:
                raise ValueError(f"user_id is required to create subscription {remote['id']}")
            subscription = BillingSubscription(user_id=user_id)
            self.db.add(subscription)

        status = STRIPE_STATUS_MAP.get(remote.get("status"), BillingSubscriptionStatus.INCOMPLETE)
        item = first_subscription_item(remote)
        period_start, period_end = subscription_period(remote)

        subscription.stripe_customer_id = remote.get("customer") or subscription.stripe_customer_id
        subscription.stripe_subscription_id = remote["id"]
        subscription.status = status.value
        subscription.current_period_start = period_start
        subscription.current_period_end = period_end
        subscription.cancel_at_period_end = bool(remote.get("cancel_at_period_end"))
        subscription.canceled_at = from_epoch(remote.get("canceled_at"))
        if item is not None:
            subscription.stripe_subscription_item_id = item.get("id")
            price = item.get("price") or {}
            subscription.stripe_price_id = price.get("id")

        self.db.commit()
        self.db.refresh(subscription)

        logger.info(f"Synced Stripe subscription {remote['id']} for user {subscription.user_id} ({status.value})")
        return subscription
