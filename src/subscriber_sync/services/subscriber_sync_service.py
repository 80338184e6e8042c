"""
Subscriber sync service - pulls subscriber lists from an ESP into the local store

One run covers every selected publication of a connection, strictly in order:

1. Load the connection and resolve its connector
2. Pre-flight: a list selection exists, credentials decrypt, and every selected
   publication still exists remotely
3. Per publication: open a sync history row, fetch, map and upsert, close the row
4. Fail the run only when every publication failed
5. Recompute billing usage for the owner, then report it to the meter
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session

from ..db.models import AuthMethod, EspConnection
from ..esp.base import EspConnector
from ..esp.records import SubscriberRecord
from ..esp.registry import ConnectorRegistry, get_connector_registry
from ..exceptions import (
    BadRequestError,
    ConfigurationError,
    InternalError,
    NotFoundError,
    SyncEngineError,
)
from ..logging_config import sync_run_context
from .billing_usage_service import BillingUsageService, UsageSnapshot
from .encryption_service import EncryptionService, get_encryption_service
from .metering import MeteringReporter
from .oauth_refresh import OAuthRefreshGate, TokenRefresher
from .subscriber_mapper import SubscriberMapper
from .subscriber_store import SubscriberStore
from .sync_history_service import SyncHistoryService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PublicationSyncResult:
    """Outcome of syncing one publication"""
    publication_id: str
    succeeded: bool
    subscriber_count: int = 0
    skipped_records: int = 0
    sync_history_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of one sync run"""
    run_id: str
    esp_connection_id: str
    user_id: str
    publications: List[PublicationSyncResult] = field(default_factory=list)
    usage: Optional[UsageSnapshot] = None
    units_reported: int = 0

    @property
    def succeeded(self) -> List[PublicationSyncResult]:
        return [p for p in self.publications if p.succeeded]

    @property
    def failed(self) -> List[PublicationSyncResult]:
        return [p for p in self.publications if not p.succeeded]

    @property
    def is_partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


class SubscriberSyncService:
    """Sync orchestrator for one ESP connection at a time"""

    def __init__(
        self,
        db: Session,
        registry: Optional[ConnectorRegistry] = None,
        encryption: Optional[EncryptionService] = None,
        token_refresher: Optional[TokenRefresher] = None,
        usage_service: Optional[BillingUsageService] = None,
        metering_reporter: Optional[MeteringReporter] = None,
    ):
        self.db = db
        self.registry = registry or get_connector_registry()
        self.encryption = encryption or get_encryption_service()
        self.token_refresher = token_refresher
        self.usage_service = usage_service or BillingUsageService(db)
        self.metering_reporter = metering_reporter or MeteringReporter(db, None)
        self.mapper = SubscriberMapper(self.encryption)
        self.store = SubscriberStore(db)
        self.history = SyncHistoryService(db)

    def sync_subscribers(self, esp_connection_id: str) -> SyncResult:
        """
        Sync every selected publication of a connection

        Safe to call repeatedly: subscribers are upserted on
        (external_id, esp_connection_id), so re-running reconciles.

        Returns:
            SyncResult with per-publication outcomes and the usage snapshot

        Raises:
            NotFoundError: connection does not exist
            BadRequestError: no lists selected, or selected lists no longer exist
            ConfigurationError: unsupported ESP type, missing credentials, OAuth unsupported
            ReconnectRequiredError: OAuth token could not be refreshed while listing publications
            InternalError: every publication failed, or an unexpected failure
        """
        with sync_run_context() as run_id:
            try:
                return self._run(run_id, esp_connection_id)
            except SyncEngineError:
                raise
            except Exception as e:
                logger.error(f"Sync failed for connection {esp_connection_id}: {e}", exc_info=True)
                raise InternalError(
                    f"Failed to sync subscribers for connection {esp_connection_id}: {e}",
                    details={"esp_connection_id": esp_connection_id},
                ) from e

    def _run(self, run_id: str, esp_connection_id: str) -> SyncResult:
        connection = self.db.get(EspConnection, esp_connection_id)
        if connection is None:
            raise NotFoundError(
                f"ESP connection with ID {esp_connection_id} not found",
                details={"esp_connection_id": esp_connection_id},
            )

        connector = self.registry.get(connection.esp_type)

        publication_ids = connection.selected_publication_ids()
        if not publication_ids:
            raise BadRequestError(
                "No lists selected for sync. Please select at least one list to sync.",
                details={"esp_connection_id": connection.id},
            )

        call = self._credentialed_caller(connection, connector)

        self._check_publications_exist(connection, connector, call, publication_ids)

        logger.info(
            f"Syncing {len(publication_ids)} publication(s) for connection {connection.id} "
            f"({connection.esp_type}, {connection.auth_method})"
        )

        result = SyncResult(run_id=run_id, esp_connection_id=connection.id, user_id=connection.user_id)
        for publication_id in publication_ids:
            result.publications.append(self._sync_publication(connection, connector, call, publication_id))

        if result.publications and not result.succeeded:
            errors = "; ".join(f"{p.publication_id}: {p.error}" for p in result.failed)
            raise InternalError(
                f"All publications failed to sync. Errors: {errors}",
                details={
                    "esp_connection_id": connection.id,
                    "failed_publication_ids": [p.publication_id for p in result.failed],
                },
            )

        if result.failed:
            logger.warning(
                f"Partial sync for connection {connection.id}: "
                f"{len(result.succeeded)} succeeded, {len(result.failed)} failed"
            )

        result.usage = self.usage_service.update_usage(connection.user_id)
        result.units_reported = self.metering_reporter.report_usage_safely(connection.user_id, result.usage)

        logger.info(
            f"Sync finished for connection {connection.id}: "
            f"{sum(p.subscriber_count for p in result.succeeded)} subscribers across "
            f"{len(result.succeeded)} publication(s)"
        )
        return result

    def _credentialed_caller(
        self,
        connection: EspConnection,
        connector: EspConnector,
    ) -> Callable[[Callable[[str], T], Callable[[str], T]], T]:
        """
        Build call(api_key_op, oauth_op) that runs the right variant for the connection

        OAuth calls go through the refresh gate and always read the access token from
        the connection row, which the gate reloads after a refresh.
        """
        if connection.auth_method == AuthMethod.OAUTH.value:
            if not connector.supports_oauth:
                raise ConfigurationError(
                    f"OAuth is not supported for ESP type {connection.esp_type}",
                    details={"esp_type": connection.esp_type},
                )
            if not connection.encrypted_access_token:
                raise ConfigurationError(
                    f"OAuth access token missing for connection {connection.id}",
                    details={"esp_connection_id": connection.id},
                )
            if self.token_refresher is None:
                raise ConfigurationError("No OAuth token refresher configured")
            self.encryption.decrypt(connection.encrypted_access_token)
            gate = OAuthRefreshGate(self.db, self.encryption, self.token_refresher)

            def call_oauth(api_key_op, oauth_op):
                access_token = self.encryption.decrypt(connection.encrypted_access_token)
                return gate.call_with_retry(connection, oauth_op, access_token)

            return call_oauth

        if not connection.encrypted_api_key:
            raise ConfigurationError(
                f"API key missing for connection {connection.id}",
                details={"esp_connection_id": connection.id},
            )
        api_key = self.encryption.decrypt(connection.encrypted_api_key)

        def call_api_key(api_key_op, oauth_op):
            return api_key_op(api_key)

        return call_api_key

    def _check_publications_exist(self, connection, connector, call, publication_ids: List[str]) -> None:
        """Fail the run before any sync when a selected publication is gone remotely"""
        publications = call(connector.fetch_publications, connector.fetch_publications_with_oauth)
        available = {str(publication.id) for publication in publications}
        missing = [pub_id for pub_id in publication_ids if pub_id not in available]
        if missing:
            raise BadRequestError(
                f"The following selected lists no longer exist: {', '.join(missing)}. "
                f"Please update your list selection.",
                details={"esp_connection_id": connection.id, "missing_publication_ids": missing},
            )

    def _sync_publication(self, connection, connector, call, publication_id: str) -> PublicationSyncResult:
        history = self.history.start(connection.id, publication_id)
        try:
            records = call(
                lambda api_key: connector.fetch_subscribers(api_key, publication_id),
                lambda token: connector.fetch_subscribers_with_oauth(token, publication_id),
            )
            processed, skipped = self._persist_records(records, connection.id, publication_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to sync publication {publication_id} for connection {connection.id}: {e}")
            self.history.fail(history, str(e))
            return PublicationSyncResult(
                publication_id=publication_id,
                succeeded=False,
                sync_history_id=history.id,
                error=str(e),
            )

        self.history.complete(history, processed)
        logger.info(
            f"Synced {processed} subscribers for publication {publication_id}"
            + (f" ({skipped} skipped)" if skipped else "")
        )
        return PublicationSyncResult(
            publication_id=publication_id,
            succeeded=True,
            subscriber_count=processed,
            skipped_records=skipped,
            sync_history_id=history.id,
        )

    def _persist_records(self, records: List[SubscriberRecord], esp_connection_id: str, publication_id: str):
        """Upsert records one by one; a bad record is logged and skipped"""
        processed = 0
        skipped = 0
        for record in records:
            try:
                if isinstance(record, dict):
                    record = SubscriberRecord.from_raw(record)
                values = self.mapper.map_record(record, esp_connection_id, publication_id)
                with self.db.begin_nested():
                    self.store.upsert(values)
                processed += 1
            except Exception as e:
                skipped += 1
                external_id = record.get("id") if isinstance(record, dict) else record.id
                logger.warning(f"Skipping subscriber {external_id or '<no id>'} in publication {publication_id}: {e}")
        self.db.commit()
        return processed, skipped
