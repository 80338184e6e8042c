"""
Encryption service for credentials and subscriber emails at rest
"""
import base64
import logging
import re
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import config
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

KDF_SALT = b"subscriber-sync-salt"
KDF_ITERATIONS = 100000

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class EncryptionService:
    """Fernet encryption keyed from ENCRYPTION_KEY via PBKDF2-SHA256"""

    def __init__(self, secret: Optional[str] = None):
        secret = secret if secret is not None else config.ENCRYPTION_KEY
        if not secret:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is required")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string; returns URL-safe base64 ciphertext"""
        try:
            return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")
        except (TypeError, AttributeError) as e:
            raise ConfigurationError(f"Encryption failed: {e}") from e

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext produced by encrypt()

        Raises:
            ConfigurationError: ciphertext is malformed or was produced with another key
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, TypeError, AttributeError, UnicodeError) as e:
            raise ConfigurationError(f"Decryption failed: {type(e).__name__}") from e


def mask_email(email: str) -> str:
    """
    Mask the local part of an email address, keeping the domain visible

    "john.doe@example.com" -> "j****@example.com"
    """
    if not email or not isinstance(email, str):
        raise ValueError("Email must be a non-empty string")
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")

    local_part, domain = email.split("@", 1)
    return f"{local_part[0]}****@{domain}"


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Get the process-wide encryption service"""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
