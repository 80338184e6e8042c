"""
ESP connection model
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.orm import relationship

from ..base import Base, JSONType


class EspType(str, enum.Enum):
    """Supported email service providers"""
    BEEHIIV = "beehiiv"
    KIT = "kit"
    MAILCHIMP = "mailchimp"
    ACTIVE_CAMPAIGN = "active_campaign"
    BREVO = "brevo"
    CAMPAIGN_MONITOR = "campaign_monitor"
    CONSTANT_CONTACT = "constant_contact"
    CUSTOMER_IO = "customer_io"
    EMAIL_OCTOPUS = "email_octopus"
    GHOST = "ghost"
    ITERABLE = "iterable"
    MAILERLITE = "mailerlite"
    OMEDA = "omeda"
    POSTUP = "postup"
    SAILTHRU = "sailthru"
    SENDGRID = "sendgrid"
    SPARKPOST = "sparkpost"


class AuthMethod(str, enum.Enum):
    """How a connection authenticates against its ESP"""
    API_KEY = "api_key"
    OAUTH = "oauth"


class EspConnectionStatus(str, enum.Enum):
    """Connection health"""
    ACTIVE = "active"
    INVALID = "invalid"
    ERROR = "error"


class EspSyncStatus(str, enum.Enum):
    """Outcome of the latest sync job"""
    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


def _uuid() -> str:
    return str(uuid.uuid4())


class EspConnection(Base):
    """One connection per (user, remote ESP account)"""
    __tablename__ = "esp_connections"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    esp_type = Column(String(50), nullable=False)
    auth_method = Column(String(20), nullable=False, default=AuthMethod.API_KEY.value)

    # Credentials are stored encrypted (see EncryptionService)
    encrypted_api_key = Column(Text, nullable=True)
    encrypted_access_token = Column(Text, nullable=True)
    encrypted_refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True, index=True)

    # Legacy single selection, superseded by publication_ids
    publication_id = Column(String(255), nullable=True)
    publication_ids = Column(JSONType, nullable=True)
    list_names = Column(JSONType, nullable=True)

    status = Column(String(20), nullable=False, default=EspConnectionStatus.ACTIVE.value, index=True)
    sync_status = Column(String(20), nullable=False, default=EspSyncStatus.IDLE.value)
    last_validated_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Deleting a connection removes its subscribers and history
    subscribers = relationship(
        "Subscriber", back_populates="esp_connection", cascade="all, delete-orphan"
    )
    sync_history = relationship(
        "SyncHistory", back_populates="esp_connection", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_esp_connections_user_status", "user_id", "status"),
    )

    def selected_publication_ids(self) -> list:
        """Multi-list selection, falling back to the legacy single publication ID"""
        if self.publication_ids:
            return [str(pid) for pid in self.publication_ids]
        if self.publication_id:
            return [self.publication_id]
        return []
