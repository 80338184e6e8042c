"""
Stripe service - remote subscription lookups and usage reporting
"""
import calendar
import logging
from datetime import datetime
from typing import Any, List, Optional

import stripe

from ..config import config
from ..exceptions import (
    ConfigurationError,
    ConnectorError,
    InvalidCredentialError,
    ProviderNetworkError,
    ProviderServerError,
    RateLimitedError,
    RemoteProviderError,
)

logger = logging.getLogger(__name__)


def _wrap_stripe_error(action: str, error: Exception) -> ConnectorError:
    """Translate a Stripe error into the provider error taxonomy"""
    status = getattr(error, "http_status", None)
    message = f"Failed to {action}: {getattr(error, 'user_message', None) or error}"
    if isinstance(error, stripe.RateLimitError):
        return RateLimitedError(message, remote_status=status or 429)
    if isinstance(error, stripe.APIConnectionError):
        return ProviderNetworkError(message)
    if isinstance(error, stripe.AuthenticationError):
        return InvalidCredentialError(message, remote_status=status or 401)
    if status is not None and status >= 500:
        return ProviderServerError(message, remote_status=status)
    return RemoteProviderError(message, remote_status=status)


class StripeService:
    """Thin wrapper around the Stripe client used by billing"""

    def __init__(self, api_key: Optional[str] = None):
        api_key = api_key or config.get_stripe_secret_key()
        if not api_key:
            raise ConfigurationError("Stripe API key not configured")
        self.stripe = stripe
        self.stripe.api_key = api_key

    def get_subscription(self, subscription_id: str) -> Any:
        """Retrieve a subscription by ID"""
        try:
            return self.stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription retrieval failed: {e}")
            raise _wrap_stripe_error("get Stripe subscription", e) from e

    def list_subscriptions_for_customer(self, customer_id: str) -> List[Any]:
        """All subscriptions of a customer, any status"""
        try:
            result = self.stripe.Subscription.list(customer=customer_id, status="all", limit=100)
            return list(result.auto_paging_iter())
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription listing failed for customer {customer_id}: {e}")
            raise _wrap_stripe_error("list Stripe subscriptions", e) from e

    def report_usage(
        self,
        subscription_item_id: str,
        quantity: int,
        timestamp: Optional[datetime] = None,
    ) -> Any:
        """
        Report the metered quantity for a subscription item

        Uses action="set" so repeated reports within a period replace, rather than
        add to, the reported peak.
        """
        params = {"quantity": quantity, "action": "set"}
        if timestamp is not None:
            params["timestamp"] = calendar.timegm(timestamp.utctimetuple())
        try:
            return self.stripe.SubscriptionItem.create_usage_record(subscription_item_id, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe usage report failed for item {subscription_item_id}: {e}")
            raise _wrap_stripe_error("report usage to Stripe meter", e) from e


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get the process-wide Stripe service"""
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripeService()
    return _stripe_service
