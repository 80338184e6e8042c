"""
Tests for the credential store
"""
import pytest

from subscriber_sync.exceptions import ConfigurationError
from subscriber_sync.services.encryption_service import EncryptionService, mask_email


class TestEncryptionService:
    """Test encrypt/decrypt"""

    def test_roundtrip(self, encryption):
        ciphertext = encryption.encrypt("sk_live_secret")
        assert ciphertext != "sk_live_secret"
        assert encryption.decrypt(ciphertext) == "sk_live_secret"

    def test_wrong_key_fails(self, encryption):
        other = EncryptionService("another-encryption-key-that-is-32-chars-long")
        with pytest.raises(ConfigurationError):
            other.decrypt(encryption.encrypt("secret"))

    def test_garbage_ciphertext_fails(self, encryption):
        with pytest.raises(ConfigurationError):
            encryption.decrypt("definitely-not-fernet")

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            EncryptionService("")


class TestMaskEmail:
    """Test email masking"""

    def test_mask(self):
        assert mask_email("john.doe@example.com") == "j****@example.com"

    @pytest.mark.parametrize("value", ["", "no-at-sign", "two@@example.com", None])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            mask_email(value)
