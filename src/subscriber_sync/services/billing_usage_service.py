"""
Usage calculator - tracks peak subscriber usage per billing period
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..db.models import (
    BillingUsage,
    BillingUsageStatus,
    EspConnection,
    SyncHistory,
    SyncHistoryStatus,
)
from ..exceptions import NotFoundError, SyncEngineError
from .billing_calculation import BillingCalculationService
from .billing_subscription_service import BillingSubscriptionService
from .stripe_service import StripeService
from .subscriber_store import SubscriberStore, dialect_insert

logger = logging.getLogger(__name__)

# Remote subscriptions considered first when resolving a period by customer
PERIOD_STATUS_PRIORITY = ("active", "trialing", "past_due")

MAX_AMOUNT_WRITE_ATTEMPTS = 3

PublicationKey = Tuple[str, str]


@dataclass
class UsageSnapshot:
    """Result of one usage recomputation"""
    user_id: str
    period_start: datetime
    period_end: datetime
    per_publication_max: Dict[PublicationKey, int] = field(default_factory=dict)
    total_subscriber_count: int = 0
    max_subscriber_count: int = 0
    calculated_amount: Decimal = Decimal("0.00")
    meter_units: int = 0


class BillingUsageService:
    """
    Service for subscriber usage billing

    Features:
    - Resolve the user's billing period from their Stripe subscription
    - Peak subscriber count per publication from sync history
    - Monotonic max-merge into billing_usage
    - Invoice status tracking
    """

    def __init__(
        self,
        db: Session,
        subscription_service: Optional[BillingSubscriptionService] = None,
        stripe_service: Optional[StripeService] = None,
        calculator: Optional[BillingCalculationService] = None,
    ):
        self.db = db
        self.subscription_service = subscription_service or BillingSubscriptionService(db)
        self.stripe_service = stripe_service
        self.calculator = calculator or BillingCalculationService()
        self.subscriber_store = SubscriberStore(db)

    def get_current_billing_period_for_user(self, user_id: str) -> Optional[Tuple[datetime, datetime]]:
        """
        Current (start, end) billing period from the user's subscription

        Uses the cached period when present. Otherwise re-syncs from Stripe, first by
        subscription ID and then by listing the customer's subscriptions. Stripe
        failures are logged and treated as "no period".

        Returns:
            (start, end) or None when no period can be resolved
        """
        subscription = self.subscription_service.find_by_user_id(user_id)
        if subscription is None:
            return None

        if subscription.current_period_start and subscription.current_period_end:
            return subscription.current_period_start, subscription.current_period_end

        if self.stripe_service is None:
            logger.debug(f"No Stripe service configured; cannot resolve billing period for user {user_id}")
            return None

        if subscription.stripe_subscription_id:
            try:
                remote = self.stripe_service.get_subscription(subscription.stripe_subscription_id)
                period = self._sync_and_read_period(remote, user_id)
                if period:
                    return period
            except (SyncEngineError, ValueError) as e:
                logger.warning(f"Could not refresh subscription {subscription.stripe_subscription_id}: {e}")

        if subscription.stripe_customer_id:
            try:
                remote_subscriptions = self.stripe_service.list_subscriptions_for_customer(
                    subscription.stripe_customer_id
                )
                remote = self._pick_subscription(remote_subscriptions)
                if remote is not None:
                    period = self._sync_and_read_period(remote, user_id)
                    if period:
                        return period
            except (SyncEngineError, ValueError) as e:
                logger.warning(f"Could not list subscriptions for customer {subscription.stripe_customer_id}: {e}")

        return None

    @staticmethod
    def _pick_subscription(remote_subscriptions):
        for status in PERIOD_STATUS_PRIORITY:
            for remote in remote_subscriptions:
                if remote.get("status") == status:
                    return remote
        return remote_subscriptions[0] if remote_subscriptions else None

    def _sync_and_read_period(self, remote, user_id: str) -> Optional[Tuple[datetime, datetime]]:
        self.subscription_service.sync_from_stripe(remote, user_id)
        refreshed = self.subscription_service.find_by_user_id(user_id)
        if refreshed and refreshed.current_period_start and refreshed.current_period_end:
            return refreshed.current_period_start, refreshed.current_period_end
        return None

    def calculate_per_publication_max_usage(
        self,
        user_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> Dict[PublicationKey, int]:
        """
        Peak subscriber count per (connection, publication) within [start, end)

        Publications are the connection's current selection plus any publication
        with history in the window. A publication with no completed successful sync
        in the window falls back to its live stored subscriber count.
        """
        connections = self.db.query(EspConnection).filter(EspConnection.user_id == user_id).all()
        per_publication_max: Dict[PublicationKey, int] = {}

        for connection in connections:
            window_max = dict(
                self.db.query(SyncHistory.publication_id, func.max(SyncHistory.subscriber_count))
                .filter(
                    SyncHistory.esp_connection_id == connection.id,
                    SyncHistory.publication_id.is_not(None),
                    SyncHistory.status == SyncHistoryStatus.SUCCESS.value,
                    SyncHistory.completed_at.is_not(None),
                    SyncHistory.started_at >= period_start,
                    SyncHistory.started_at < period_end,
                )
                .group_by(SyncHistory.publication_id)
                .all()
            )

            publication_ids = list(connection.selected_publication_ids())
            publication_ids += [pub_id for pub_id in window_max if pub_id not in publication_ids]

            for publication_id in publication_ids:
                peak = window_max.get(publication_id)
                if peak is None:
                    peak = self.subscriber_store.count_for_publication(connection.id, publication_id)
                per_publication_max[(connection.id, publication_id)] = int(peak or 0)

        return per_publication_max

    def update_usage(self, user_id: str) -> Optional[UsageSnapshot]:
        """
        Recompute usage for the user's current billing period

        Returns:
            UsageSnapshot, or None when no billing period could be resolved
        """
        period = self.get_current_billing_period_for_user(user_id)
        if period is None:
            logger.info(f"No billing period for user {user_id}; skipping usage tracking")
            return None

        period_start, period_end = period
        per_publication_max = self.calculate_per_publication_max_usage(user_id, period_start, period_end)
        total = sum(per_publication_max.values())

        usage = self._merge_max(user_id, period_start, period_end, total)

        snapshot = UsageSnapshot(
            user_id=user_id,
            period_start=period_start,
            period_end=period_end,
            per_publication_max=per_publication_max,
            total_subscriber_count=total,
            max_subscriber_count=usage.max_subscriber_count,
            calculated_amount=Decimal(usage.calculated_amount),
            meter_units=self.calculator.calculate_meter_units(total),
        )
        logger.info(
            f"Usage for user {user_id} ({period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}): "
            f"current={total}, peak={snapshot.max_subscriber_count}, amount={snapshot.calculated_amount}"
        )
        return snapshot

    def _merge_max(self, user_id: str, period_start: datetime, period_end: datetime, total: int) -> BillingUsage:
        """
        Upsert the period row taking max(existing, total), then refresh the amount

        The amount is written with a compare-and-swap on the max it was derived from,
        so a concurrent writer that raised the max is never overwritten with a
        stale amount.
        """
        table = BillingUsage.__table__
        now = datetime.utcnow()

        stmt = dialect_insert(self.db, table).values(
            user_id=user_id,
            billing_period_start=period_start,
            billing_period_end=period_end,
            max_subscriber_count=total,
            calculated_amount=self.calculator.calculate_amount(total),
            status=BillingUsageStatus.PENDING.value,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.billing_period_start],
            set_={
                "max_subscriber_count": case(
                    (stmt.excluded.max_subscriber_count > table.c.max_subscriber_count,
                     stmt.excluded.max_subscriber_count),
                    else_=table.c.max_subscriber_count,
                ),
                "billing_period_end": stmt.excluded.billing_period_end,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.db.execute(stmt)

        for _ in range(MAX_AMOUNT_WRITE_ATTEMPTS):
            peak = self.db.query(BillingUsage.max_subscriber_count).filter(
                BillingUsage.user_id == user_id,
                BillingUsage.billing_period_start == period_start,
            ).scalar()
            updated = self.db.query(BillingUsage).filter(
                BillingUsage.user_id == user_id,
                BillingUsage.billing_period_start == period_start,
                BillingUsage.max_subscriber_count == peak,
            ).update(
                {BillingUsage.calculated_amount: self.calculator.calculate_amount(peak)},
                synchronize_session=False,
            )
            if updated:
                break

        self.db.commit()

        usage = self.db.query(BillingUsage).filter(
            BillingUsage.user_id == user_id,
            BillingUsage.billing_period_start == period_start,
        ).one()
        self.db.refresh(usage)
        return usage

    def get_current_usage(self, user_id: str) -> Optional[BillingUsage]:
        """Usage row for the period containing now"""
        if self.get_current_billing_period_for_user(user_id) is None:
            return None
        now = datetime.utcnow()
        return self.db.query(BillingUsage).filter(
            BillingUsage.user_id == user_id,
            BillingUsage.billing_period_start <= now,
            BillingUsage.billing_period_end > now,
        ).first()

    def get_billing_history(self, user_id: str, limit: int = 12) -> List[BillingUsage]:
        """Closed periods, most recent first"""
        now = datetime.utcnow()
        return (
            self.db.query(BillingUsage)
            .filter(BillingUsage.user_id == user_id, BillingUsage.billing_period_end < now)
            .order_by(BillingUsage.billing_period_start.desc())
            .limit(limit)
            .all()
        )

    def find_by_stripe_invoice_id(self, stripe_invoice_id: str) -> Optional[BillingUsage]:
        return self.db.query(BillingUsage).filter(BillingUsage.stripe_invoice_id == stripe_invoice_id).first()

    def update_status(
        self,
        usage_id: str,
        status: BillingUsageStatus,
        stripe_invoice_id: Optional[str] = None,
    ) -> BillingUsage:
        """
        Set invoicing status (and optionally the invoice reference)

        Raises:
            NotFoundError: no usage row with that ID
        """
        usage = self.db.query(BillingUsage).filter(BillingUsage.id == usage_id).first()
        if usage is None:
            raise NotFoundError(f"Billing usage with ID {usage_id} not found")

        usage.status = BillingUsageStatus(status).value
        if stripe_invoice_id is not None:
            usage.stripe_invoice_id = stripe_invoice_id
        self.db.commit()
        self.db.refresh(usage)
        return usage

    def update_status_by_invoice_id(
        self,
        stripe_invoice_id: str,
        status: BillingUsageStatus,
    ) -> Optional[BillingUsage]:
        usage = self.find_by_stripe_invoice_id(stripe_invoice_id)
        if usage is None:
            return None
        usage.status = BillingUsageStatus(status).value
        self.db.commit()
        self.db.refresh(usage)
        return usage
