"""
Sync history service - records one row per (connection, publication, attempt)
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import SyncHistory, SyncHistoryStatus

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 2000


class SyncHistoryService:
    """
    Owns sync history transitions

    A row starts optimistic (SUCCESS, completed_at=None) and is closed exactly once
    by complete() or fail(). A FAILED row never goes back to SUCCESS.
    """

    def __init__(self, db: Session):
        self.db = db

    def start(self, esp_connection_id: str, publication_id: str) -> SyncHistory:
        """Create and commit the optimistic row for a publication sync"""
        row = SyncHistory(
            esp_connection_id=esp_connection_id,
            publication_id=publication_id,
            status=SyncHistoryStatus.SUCCESS.value,
            started_at=datetime.utcnow(),
            completed_at=None,
            error_message=None,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def complete(self, row: SyncHistory, subscriber_count: int) -> SyncHistory:
        """Close a row successfully"""
        self._ensure_open(row)
        row.completed_at = datetime.utcnow()
        row.subscriber_count = subscriber_count
        self.db.commit()
        return row

    def fail(self, row: SyncHistory, error_message: str) -> SyncHistory:
        """Close a row as FAILED"""
        self._ensure_open(row)
        row.status = SyncHistoryStatus.FAILED.value
        row.completed_at = datetime.utcnow()
        row.error_message = (error_message or "Unknown error")[:MAX_ERROR_MESSAGE_LENGTH]
        self.db.commit()
        return row

    @staticmethod
    def _ensure_open(row: SyncHistory) -> None:
        if row.completed_at is not None:
            raise ValueError(f"Sync history {row.id} is already completed")

    def list_for_connection(self, esp_connection_id: str, limit: int = 50) -> List[SyncHistory]:
        """Most recent rows first"""
        return list(
            self.db.execute(
                select(SyncHistory)
                .where(SyncHistory.esp_connection_id == esp_connection_id)
                .order_by(SyncHistory.started_at.desc(), SyncHistory.created_at.desc())
                .limit(limit)
            ).scalars()
        )

    def latest_for_publication(self, esp_connection_id: str, publication_id: str) -> Optional[SyncHistory]:
        return self.db.execute(
            select(SyncHistory)
            .where(
                SyncHistory.esp_connection_id == esp_connection_id,
                SyncHistory.publication_id == publication_id,
            )
            .order_by(SyncHistory.started_at.desc(), SyncHistory.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def has_recent_success(self, esp_connection_id: str, since: datetime) -> bool:
        """At least one completed successful publication sync started since `since`"""
        row = self.db.execute(
            select(SyncHistory.id)
            .where(
                SyncHistory.esp_connection_id == esp_connection_id,
                SyncHistory.publication_id.is_not(None),
                SyncHistory.status == SyncHistoryStatus.SUCCESS.value,
                SyncHistory.completed_at.is_not(None),
                SyncHistory.started_at >= since,
            )
            .limit(1)
        ).first()
        return row is not None
