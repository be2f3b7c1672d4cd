"""
Symmetric encryption for stored generation-API keys.

``ENCRYPTION_KEY`` holds one or more comma-separated Fernet keys. New
tokens use the first key; every listed key can decrypt, so a key can be
rotated by prepending the new one and re-saving credentials later.
"""

import logging
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionService:

    def __init__(self, keys: Optional[str] = None):
        keys = keys if keys is not None else os.getenv("ENCRYPTION_KEY", "")
        fernets = [Fernet(k.strip().encode()) for k in keys.split(",") if k.strip()]
        if not fernets:
            raise ValueError("ENCRYPTION_KEY environment variable not set")
        self.cipher = MultiFernet(fernets)

    def encrypt(self, api_key: str) -> str:
        return self.cipher.encrypt(api_key.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Raises:
            ValueError: the token is malformed or no configured key matches
        """
        try:
            return self.cipher.decrypt(token.encode()).decode()
        except InvalidToken as e:
            logger.error("Stored API key could not be decrypted with the configured keys")
            raise ValueError("Failed to decrypt data") from e


_encryption_service = None


def get_encryption_service() -> EncryptionService:
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
