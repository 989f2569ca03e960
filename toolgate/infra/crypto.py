"""Symmetric encryption of stored action and credential metadata."""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from toolgate.infra.config import config
from toolgate.infra.errors import ConfigurationError, MetadataDecryptionError
from toolgate.models.action import ActionMetadata

logger = logging.getLogger(__name__)

ENCRYPTED_FIELDS = ("api_key", "oauth_client_id", "oauth_client_secret")


class FernetMetadataDecryptor:
    """
    Decrypts the secret fields of action metadata with a Fernet key.

    The key comes from CREDS_KEY (or CREDS_KEY_REF) unless passed explicitly.
    """

    def __init__(self, key: Optional[str] = None):
        key = key or config.CREDS_KEY
        if not key:
            raise ConfigurationError("CREDS_KEY is not configured; cannot decrypt action credentials")
        try:
            self._fernet = Fernet(key.encode("utf-8") if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"CREDS_KEY is not a valid Fernet key: {e}")

    def encrypt_value(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")

    def decrypt_value(self, value: str) -> str:
        """
        Raises:
            MetadataDecryptionError: If the token is invalid or was encrypted with another key
        """
        try:
            return self._fernet.decrypt(value.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise MetadataDecryptionError("Failed to decrypt credential: invalid token or wrong key")

    async def decrypt(self, metadata: ActionMetadata) -> ActionMetadata:
        """Return a copy of metadata with every encrypted field decrypted."""
        updates = {}
        for name in ENCRYPTED_FIELDS:
            value = getattr(metadata, name)
            if value:
                updates[name] = self.decrypt_value(value)
        return metadata.model_copy(update=updates)

    def encrypt(self, metadata: ActionMetadata) -> ActionMetadata:
        updates = {}
        for name in ENCRYPTED_FIELDS:
            value = getattr(metadata, name)
            if value:
                updates[name] = self.encrypt_value(value)
        return metadata.model_copy(update=updates)
