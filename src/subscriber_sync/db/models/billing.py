"""
Billing subscription and usage models
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, UniqueConstraint

from ..base import Base


class BillingSubscriptionStatus(str, enum.Enum):
    """Mirror of the Stripe subscription status"""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class BillingUsageStatus(str, enum.Enum):
    """Invoicing state of a usage period"""
    PENDING = "pending"
    INVOICED = "invoiced"
    PAID = "paid"
    FAILED = "failed"


def _uuid() -> str:
    return str(uuid.uuid4())


class BillingSubscription(Base):
    """Local mirror of a user's Stripe subscription"""
    __tablename__ = "billing_subscriptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=False, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_price_id = Column(String(255), nullable=True)
    stripe_subscription_item_id = Column(String(255), nullable=True)
    status = Column(String(30), nullable=False, default=BillingSubscriptionStatus.INCOMPLETE.value, index=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class BillingUsage(Base):
    """Peak subscriber usage per (user, billing period)"""
    __tablename__ = "billing_usage"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    billing_period_start = Column(DateTime, nullable=False)
    billing_period_end = Column(DateTime, nullable=False)
    # Never decreases within a period
    max_subscriber_count = Column(Integer, default=0, nullable=False)
    calculated_amount = Column(Numeric(12, 2), default=0, nullable=False)
    status = Column(String(20), nullable=False, default=BillingUsageStatus.PENDING.value)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "billing_period_start", name="uq_billing_usage_user_period"),
    )
