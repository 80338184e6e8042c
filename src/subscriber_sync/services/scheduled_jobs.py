"""
Scheduled Jobs Service
Runs connection syncs and manages the periodic sync, token refresh and billing jobs
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import config
from ..db.models import (
    AuthMethod,
    BillingSubscription,
    BillingSubscriptionStatus,
    EspConnection,
    EspConnectionStatus,
    EspSyncStatus,
)
from ..esp.registry import ConnectorRegistry
from ..exceptions import BadRequestError, NotFoundError
from .billing_subscription_service import BillingSubscriptionService
from .billing_usage_service import BillingUsageService
from .metering import MeteringReporter
from .oauth_refresh import TokenRefresher
from .stripe_service import StripeService
from .subscriber_sync_service import SubscriberSyncService, SyncResult
from .sync_history_service import SyncHistoryService

logger = logging.getLogger(__name__)

# Window used to decide whether a failed run still synced some publications
RECENT_SYNC_WINDOW = timedelta(minutes=5)

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None

# Collaborators shared by scheduled jobs, set once at startup
_job_dependencies: Dict[str, Any] = {
    "registry": None,
    "token_refresher": None,
    "stripe_service": None,
    "session_factory": None,
}


def configure_jobs(
    registry: Optional[ConnectorRegistry] = None,
    token_refresher: Optional[TokenRefresher] = None,
    stripe_service: Optional[StripeService] = None,
    session_factory: Optional[Callable[[], Session]] = None,
):
    """Set the collaborators used by scheduled jobs"""
    _job_dependencies.update(
        registry=registry,
        token_refresher=token_refresher,
        stripe_service=stripe_service,
        session_factory=session_factory,
    )


def _open_session() -> Session:
    factory = _job_dependencies["session_factory"]
    if factory is None:
        from ..db.engine import SessionLocal
        factory = SessionLocal
    return factory()


def build_sync_service(db: Session) -> SubscriberSyncService:
    """Wire a sync service from the configured collaborators"""
    stripe_service = _job_dependencies["stripe_service"]
    return SubscriberSyncService(
        db,
        registry=_job_dependencies["registry"],
        token_refresher=_job_dependencies["token_refresher"],
        usage_service=BillingUsageService(db, stripe_service=stripe_service),
        metering_reporter=MeteringReporter(db, stripe_service),
    )


def run_connection_sync(esp_connection_id: str, db: Optional[Session] = None) -> SyncResult:
    """
    Sync one connection and record the outcome on the connection row

    Raises:
        NotFoundError: connection does not exist
        BadRequestError: owner has no active subscription
        SyncEngineError: the sync itself failed (re-raised after updating sync_status)
    """
    owns_session = db is None
    db = db or _open_session()

    try:
        connection = db.get(EspConnection, esp_connection_id)
        if connection is None:
            raise NotFoundError(f"ESP connection {esp_connection_id} not found")

        if not BillingSubscriptionService(db).has_active_subscription(connection.user_id):
            logger.warning(
                f"Rejecting sync for ESP connection {esp_connection_id}: "
                f"user {connection.user_id} does not have an active subscription"
            )
            connection.sync_status = EspSyncStatus.IDLE.value
            db.commit()
            raise BadRequestError(
                "Active subscription required to sync subscribers. Please subscribe to continue.",
                details={"esp_connection_id": esp_connection_id},
            )

        try:
            result = build_sync_service(db).sync_subscribers(esp_connection_id)
        except Exception as e:
            logger.error(f"Failed to sync subscribers for ESP connection {esp_connection_id}: {e}")
            db.rollback()
            since = datetime.utcnow() - RECENT_SYNC_WINDOW
            partially_synced = SyncHistoryService(db).has_recent_success(esp_connection_id, since)
            connection = db.get(EspConnection, esp_connection_id)
            if connection is not None:
                connection.sync_status = (
                    EspSyncStatus.SYNCED.value if partially_synced else EspSyncStatus.ERROR.value
                )
                db.commit()
            raise

        connection = db.get(EspConnection, esp_connection_id)
        connection.last_synced_at = datetime.utcnow()
        connection.sync_status = EspSyncStatus.SYNCED.value
        db.commit()

        logger.info(f"Successfully synced subscribers for ESP connection {esp_connection_id}")
        return result
    finally:
        if owns_session:
            db.close()


def run_nightly_sync_job(db: Optional[Session] = None) -> Dict[str, int]:
    """
    Nightly sync - syncs every active connection of users with an active subscription

    Connections without a list selection or already syncing are skipped.
    """
    owns_session = db is None
    db = db or _open_session()

    logger.info("Starting scheduled nightly sync job")
    stats = {"synced": 0, "failed": 0, "skipped_syncing": 0, "skipped_no_lists": 0}

    try:
        user_ids = {
            row.user_id
            for row in db.query(BillingSubscription.user_id).filter(
                BillingSubscription.status == BillingSubscriptionStatus.ACTIVE.value,
                BillingSubscription.cancel_at_period_end == False,  # noqa: E712
            )
        }
        if not user_ids:
            logger.info("No active subscriptions found for nightly sync")
            return stats

        connections = db.query(EspConnection).filter(
            EspConnection.user_id.in_(user_ids),
            EspConnection.status == EspConnectionStatus.ACTIVE.value,
        ).all()

        for connection in connections:
            if not connection.selected_publication_ids():
                stats["skipped_no_lists"] += 1
                continue
            if connection.sync_status == EspSyncStatus.SYNCING.value:
                stats["skipped_syncing"] += 1
                continue

            connection_id = connection.id
            connection.sync_status = EspSyncStatus.SYNCING.value
            db.commit()

            try:
                run_connection_sync(connection_id, db=db)
                stats["synced"] += 1
            except Exception as e:
                stats["failed"] += 1
                logger.error(f"Nightly sync failed for ESP connection {connection_id}: {e}")

        logger.info(
            f"Nightly sync completed: {stats['synced']} synced, {stats['failed']} failed "
            f"(skipped syncing: {stats['skipped_syncing']}, skipped no lists: {stats['skipped_no_lists']})"
        )
        return stats
    finally:
        if owns_session:
            db.close()


def run_token_refresh_job(db: Optional[Session] = None) -> Dict[str, int]:
    """
    Proactive OAuth token refresh for tokens expiring within the refresh window
    """
    owns_session = db is None
    db = db or _open_session()
    stats = {"refreshed": 0, "failed": 0}

    try:
        refresher = _job_dependencies["token_refresher"]
        if refresher is None:
            logger.warning("No OAuth token refresher configured; skipping token refresh job")
            return stats

        threshold = datetime.utcnow() + timedelta(minutes=config.TOKEN_REFRESH_WINDOW_MINUTES)
        connections = db.query(EspConnection).filter(
            EspConnection.auth_method == AuthMethod.OAUTH.value,
            EspConnection.token_expires_at.is_not(None),
            EspConnection.token_expires_at <= threshold,
        ).all()

        logger.info(f"Found {len(connections)} OAuth connections with tokens expiring before {threshold}")

        for connection in connections:
            try:
                refresher.refresh_token(connection)
                db.commit()
                stats["refreshed"] += 1
                logger.info(f"Refreshed token for connection {connection.id} ({connection.esp_type})")
            except Exception as e:
                db.rollback()
                stats["failed"] += 1
                logger.error(f"Failed to refresh token for connection {connection.id} ({connection.esp_type}): {e}")

        logger.info(f"Token refresh completed: {stats['refreshed']} refreshed, {stats['failed']} failed")
        return stats
    finally:
        if owns_session:
            db.close()


def run_billing_recompute_job(db: Optional[Session] = None) -> Dict[str, int]:
    """
    Recompute usage for every active subscription and report it to the meter
    """
    owns_session = db is None
    db = db or _open_session()
    stats = {"updated": 0, "skipped": 0, "failed": 0}

    try:
        stripe_service = _job_dependencies["stripe_service"]
        usage_service = BillingUsageService(db, stripe_service=stripe_service)
        reporter = MeteringReporter(db, stripe_service)

        user_ids = [
            row.user_id
            for row in db.query(BillingSubscription.user_id).filter(
                BillingSubscription.status.in_([
                    BillingSubscriptionStatus.ACTIVE.value,
                    BillingSubscriptionStatus.TRIALING.value,
                ])
            )
        ]

        for user_id in user_ids:
            try:
                snapshot = usage_service.update_usage(user_id)
                if snapshot is None:
                    stats["skipped"] += 1
                    continue
                reporter.report_usage_safely(user_id, snapshot)
                stats["updated"] += 1
            except Exception as e:
                db.rollback()
                stats["failed"] += 1
                logger.error(f"Failed to recompute usage for user {user_id}: {e}", exc_info=True)

        logger.info(
            f"Billing recompute completed: {stats['updated']} updated, "
            f"{stats['skipped']} skipped, {stats['failed']} failed"
        )
        return stats
    finally:
        if owns_session:
            db.close()


def get_scheduler() -> BackgroundScheduler:
    """
    Get or create the background scheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

    return _scheduler


def start_scheduler():
    """
    Start the background scheduler and register all jobs
    """
    scheduler = get_scheduler()

    if not scheduler.running:
        scheduler.add_job(
            func=run_nightly_sync_job,
            trigger=CronTrigger(hour=config.NIGHTLY_SYNC_HOUR, minute=0),
            id='nightly_sync',
            name='Nightly subscriber sync',
            replace_existing=True
        )
        logger.info(f"Registered nightly sync job (daily at {config.NIGHTLY_SYNC_HOUR}:00)")

        scheduler.add_job(
            func=run_token_refresh_job,
            trigger=IntervalTrigger(minutes=config.TOKEN_REFRESH_INTERVAL_MINUTES),
            id='oauth_token_refresh',
            name='OAuth token refresh',
            replace_existing=True
        )
        logger.info(f"Registered OAuth token refresh job (every {config.TOKEN_REFRESH_INTERVAL_MINUTES} minutes)")

        scheduler.add_job(
            func=run_billing_recompute_job,
            trigger=CronTrigger(hour=config.BILLING_RECOMPUTE_HOUR, minute=0),
            id='billing_recompute',
            name='Billing usage recompute',
            replace_existing=True
        )
        logger.info(f"Registered billing recompute job (daily at {config.BILLING_RECOMPUTE_HOUR}:00)")

        scheduler.start()
        logger.info("Background scheduler started")
    else:
        logger.warning("Scheduler already running")


def stop_scheduler():
    """
    Stop the background scheduler
    """
    scheduler = get_scheduler()

    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
