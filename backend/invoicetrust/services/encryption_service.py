"""
Encryption service for integration credentials.

WHAT: Symmetric encryption for secrets tenants store in their settings
(WhatsApp access tokens and similar provider credentials).

WHY: Tenant settings are plain JSON in the database. Provider tokens in
that document must be unreadable without the server key.

HOW: Uses Fernet (from cryptography library), which provides
authenticated encryption with URL-safe base64 output.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import EncryptionError

logger = logging.getLogger(__name__)


class EncryptionService:
    """
    Service for encrypting and decrypting integration credentials.

    Security notes:
    - Never log plaintext values
    - Invalid tokens raise EncryptionError (no silent failures)

    Example:
        service = EncryptionService()
        stored = service.encrypt("EAAG...")
        token = service.decrypt(stored)
    """

    def __init__(self, key: Optional[str] = None):
        """
        Initialize encryption service.

        Args:
            key: Optional Fernet key (base64-encoded). Defaults to settings.ENCRYPTION_KEY.

        Raises:
            EncryptionError: If key is missing or invalid.
        """
        encryption_key = key or settings.ENCRYPTION_KEY

        if not encryption_key:
            logger.error("Encryption key not configured")
            raise EncryptionError(
                message="Encryption key not configured",
                hint="Set ENCRYPTION_KEY environment variable",
            )

        try:
            self._fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid encryption key format: {e}")
            raise EncryptionError(
                message="Invalid encryption key format",
                hint="Key must be 32 bytes, URL-safe base64-encoded",
            )

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string.

        Raises:
            EncryptionError: If plaintext is empty.
        """
        if not plaintext:
            raise EncryptionError(message="Cannot encrypt empty value")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt an encrypted ciphertext.

        Raises:
            EncryptionError: If decryption fails (invalid token, wrong key).
        """
        if not ciphertext:
            raise EncryptionError(message="Cannot decrypt empty value")

        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.warning("Decryption failed: invalid token or wrong key")
            raise EncryptionError(
                message="Failed to decrypt data",
                reason="Invalid token - data may be corrupted or key changed",
            )

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key (44 URL-safe base64 characters)."""
        return Fernet.generate_key().decode()


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """
    Get or create the global encryption service instance.

    Returns:
        EncryptionService instance.
    """
    global _encryption_service

    if _encryption_service is None:
        _encryption_service = EncryptionService()

    return _encryption_service
