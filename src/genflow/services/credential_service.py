"""
Owner credential resolution for the generation API.
"""

import logging

from sqlalchemy.orm import Session

from genflow.repositories.user_credential_repository import UserCredentialRepository
from genflow.services.encryption_service import EncryptionService, get_encryption_service
from genflow.services.errors import AuthError

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "No generation API key configured. Please add your API key in settings."
UNDECRYPTABLE_KEY_MESSAGE = "Failed to decrypt API key. Please re-enter your API key in settings."


class CredentialService:

    def __init__(self, db: Session, encryption: EncryptionService | None = None):
        self.db = db
        self._encryption = encryption

    @property
    def encryption(self) -> EncryptionService:
        if self._encryption is None:
            self._encryption = get_encryption_service()
        return self._encryption

    def resolve_api_key(self, owner_id: str) -> str:
        """
        Decrypted generation-API key for ``owner_id``.

        Raises:
            AuthError: no key stored, or the stored key cannot be decrypted
        """
        encrypted = UserCredentialRepository.get_encrypted_api_key(self.db, owner_id)
        if not encrypted:
            logger.warning("User %s has no generation API key configured", owner_id)
            raise AuthError(MISSING_KEY_MESSAGE)

        try:
            api_key = self.encryption.decrypt(encrypted)
        except ValueError as e:
            logger.error("Failed to decrypt API key for user %s", owner_id)
            raise AuthError(UNDECRYPTABLE_KEY_MESSAGE) from e

        if not api_key:
            raise AuthError(UNDECRYPTABLE_KEY_MESSAGE)
        return api_key

    def store_api_key(self, owner_id: str, api_key: str) -> None:
        UserCredentialRepository.upsert(self.db, owner_id, self.encryption.encrypt(api_key))

    def delete_api_key(self, owner_id: str) -> bool:
        return UserCredentialRepository.delete(self.db, owner_id)
