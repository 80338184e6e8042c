"""
Subscriber and sync history models
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..base import Base, JSONType


class SubscriberStatus(str, enum.Enum):
    """Local subscriber status"""
    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"
    PENDING = "pending"


class SyncHistoryStatus(str, enum.Enum):
    """Outcome of one (connection, publication) sync attempt"""
    SUCCESS = "success"
    FAILED = "failed"


def _uuid() -> str:
    return str(uuid.uuid4())


class Subscriber(Base):
    """Subscriber pulled from an ESP, unique per (external_id, esp_connection_id)"""
    __tablename__ = "subscribers"

    id = Column(String(36), primary_key=True, default=_uuid)
    esp_connection_id = Column(
        String(36), ForeignKey("esp_connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id = Column(String(255), nullable=False)
    encrypted_email = Column(Text, nullable=False)
    masked_email = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=SubscriberStatus.ACTIVE.value, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    subscribed_at = Column(DateTime, nullable=True)
    unsubscribed_at = Column(DateTime, nullable=True)
    publication_id = Column(String(255), nullable=True)

    # ESP-specific fields (renamed from 'metadata' - reserved in SQLAlchemy)
    extra_metadata = Column("metadata", JSONType, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    esp_connection = relationship("EspConnection", back_populates="subscribers")

    __table_args__ = (
        UniqueConstraint("external_id", "esp_connection_id", name="uq_subscribers_external_connection"),
        Index("idx_subscribers_connection_publication", "esp_connection_id", "publication_id"),
    )


class SyncHistory(Base):
    """One row per (connection, publication, attempt)"""
    __tablename__ = "sync_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    esp_connection_id = Column(
        String(36), ForeignKey("esp_connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    publication_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    subscriber_count = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    esp_connection = relationship("EspConnection", back_populates="sync_history")

    __table_args__ = (
        Index("idx_sync_history_connection_started", "esp_connection_id", "started_at"),
        Index("idx_sync_history_connection_status", "esp_connection_id", "status"),
    )
