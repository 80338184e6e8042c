"""
Maps ESP subscriber records to the local subscriber schema
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..db.models import SubscriberStatus
from ..esp.records import DateLike, SubscriberRecord
from .encryption_service import EncryptionService, mask_email

logger = logging.getLogger(__name__)

# Epoch values at or above this are milliseconds
EPOCH_MILLIS_THRESHOLD = 100_000_000_000

# Provider-specific fields kept in subscriber metadata; everything else is dropped
METADATA_ALLOWED_FIELDS = frozenset({
    "tags",
    "source",
    "tier",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "referring_site",
    "language",
    "country",
    "timezone",
    "custom_fields",
    "email_type",
    "member_rating",
    "vip",
})

STATUS_MAP = {
    "active": SubscriberStatus.ACTIVE,
    "subscribed": SubscriberStatus.ACTIVE,
    "unsubscribed": SubscriberStatus.UNSUBSCRIBED,
    "inactive": SubscriberStatus.UNSUBSCRIBED,
    "bounced": SubscriberStatus.BOUNCED,
    "spam": SubscriberStatus.BOUNCED,
    "invalid": SubscriberStatus.BOUNCED,
    "cleaned": SubscriberStatus.BOUNCED,
    "pending": SubscriberStatus.PENDING,
    "unconfirmed": SubscriberStatus.PENDING,
    "validating": SubscriberStatus.PENDING,
}


class SubscriberMapper:
    """Turns a SubscriberRecord into column values for the subscribers table"""

    def __init__(self, encryption: EncryptionService):
        self.encryption = encryption

    def map_record(
        self,
        record: SubscriberRecord,
        esp_connection_id: str,
        publication_id: str,
    ) -> Dict[str, Any]:
        """
        Map one ESP subscriber to local column values

        - Encrypts the email and derives the masked display form
        - Maps the provider status to SubscriberStatus
        - Parses dates (datetime, ISO-8601 string or epoch seconds)
        - Keeps allow-listed provider fields plus the publication ID in metadata

        Raises:
            ValueError: record has no ID or email, or a malformed email
        """
        if not record.id:
            raise ValueError("Subscriber externalId is required")
        if not record.email:
            raise ValueError("Subscriber email is required")

        email = record.email.strip()
        metadata = {
            key: value
            for key, value in record.extra.items()
            if key in METADATA_ALLOWED_FIELDS and value is not None
        }
        metadata["publicationId"] = publication_id

        return {
            "esp_connection_id": esp_connection_id,
            "external_id": record.id,
            "encrypted_email": self.encryption.encrypt(email),
            "masked_email": mask_email(email),
            "status": self.map_status(record.status).value,
            "first_name": record.first_name or None,
            "last_name": record.last_name or None,
            "subscribed_at": self.map_date(record.subscribed_at),
            "unsubscribed_at": self.map_date(record.unsubscribed_at),
            "publication_id": publication_id,
            "extra_metadata": metadata,
        }

    @staticmethod
    def map_status(status: Optional[str]) -> SubscriberStatus:
        """Unknown or missing statuses default to ACTIVE"""
        if not status:
            return SubscriberStatus.ACTIVE
        return STATUS_MAP.get(status.strip().lower(), SubscriberStatus.ACTIVE)

    @staticmethod
    def map_date(value: Optional[DateLike]) -> Optional[datetime]:
        """Normalize to a naive UTC datetime; unparseable values become None"""
        if value is None or value == "":
            return None

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)):
            seconds = value / 1000 if abs(value) >= EPOCH_MILLIS_THRESHOLD else value
            try:
                parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                logger.debug(f"Ignoring out-of-range epoch value: {value!r}")
                return None
        else:
            try:
                parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"Ignoring unparseable date value: {value!r}")
                return None

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
