"""
Subscriber store - idempotent persistence keyed by (external_id, esp_connection_id)
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..db.models import Subscriber

logger = logging.getLogger(__name__)

# Columns overwritten on every sync
MUTABLE_FIELDS = (
    "encrypted_email",
    "masked_email",
    "status",
    "first_name",
    "last_name",
    "subscribed_at",
    "unsubscribed_at",
    "publication_id",
    "extra_metadata",
)


def _column_name(attribute: str) -> str:
    """Table column behind a Subscriber attribute (extra_metadata -> metadata)"""
    return getattr(Subscriber, attribute).property.columns[0].name


def dialect_insert(db: Session, table):
    """INSERT construct supporting ON CONFLICT for the session's dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert is not supported on dialect {dialect}")


class SubscriberStore:
    """Upserts and counts subscribers"""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, values: Dict[str, Any]) -> None:
        """
        Create or fully overwrite a subscriber in one statement

        The unique constraint on (external_id, esp_connection_id) makes concurrent
        syncs of the same connection converge on one row.
        """
        table = Subscriber.__table__
        row = {_column_name(key): value for key, value in values.items()}
        row["updated_at"] = datetime.utcnow()

        # id and created_at fall back to the column defaults on insert
        stmt = dialect_insert(self.db, table).values(**row)
        update_columns = {
            _column_name(field): stmt.excluded[_column_name(field)] for field in MUTABLE_FIELDS
        }
        update_columns["updated_at"] = stmt.excluded.updated_at

        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.external_id, table.c.esp_connection_id],
            set_=update_columns,
        )
        self.db.execute(stmt)

    def get(self, esp_connection_id: str, external_id: str) -> Optional[Subscriber]:
        return self.db.execute(
            select(Subscriber).where(
                Subscriber.esp_connection_id == esp_connection_id,
                Subscriber.external_id == external_id,
            )
        ).scalar_one_or_none()

    def list_for_connection(self, esp_connection_id: str) -> List[Subscriber]:
        return list(
            self.db.execute(
                select(Subscriber)
                .where(Subscriber.esp_connection_id == esp_connection_id)
                .order_by(Subscriber.external_id)
            ).scalars()
        )

    def count_for_connection(self, esp_connection_id: str) -> int:
        return self.db.execute(
            select(func.count()).select_from(Subscriber).where(
                Subscriber.esp_connection_id == esp_connection_id
            )
        ).scalar_one()

    def count_for_publication(self, esp_connection_id: str, publication_id: str) -> int:
        """Live count of stored subscribers last seen in a publication"""
        return self.db.execute(
            select(func.count()).select_from(Subscriber).where(
                Subscriber.esp_connection_id == esp_connection_id,
                Subscriber.publication_id == publication_id,
            )
        ).scalar_one()
