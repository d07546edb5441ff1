"""Mailbox secret encryption using Fernet symmetric encryption."""

import hashlib
import os
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from loguru import logger

from ..core.environment import Environment


class SecretCipher:
    """Encrypts mailbox secrets before they are written to storage."""

    def __init__(self, encryption_key: Optional[str] = None):
        """
        Initialize cipher with key.

        Args:
            encryption_key: Base64-encoded Fernet key. If None, reads ENCRYPTION_KEY.

        Raises:
            ValueError: If encryption key is not provided or invalid
        """
        key = encryption_key or os.getenv("ENCRYPTION_KEY")
        if not key:
            raise ValueError(
                "ENCRYPTION_KEY must be set in environment variables. "
                'Generate one with: python -c "from cryptography.fernet import Fernet; '
                'print(Fernet.generate_key().decode())"'
            )

        try:
            self._key_hash = hashlib.sha256(key.encode()).hexdigest()[:16]

            # New key first, then old key so rotated data still decrypts
            fernet_keys = [Fernet(key.encode())]
            old_key = os.getenv("ENCRYPTION_KEY_OLD")
            if old_key:
                try:
                    fernet_keys.append(Fernet(old_key.encode()))
                    logger.info("Old encryption key loaded for key rotation support")
                except Exception as e:
                    logger.warning(f"Failed to load old encryption key: {e}")

            self.cipher = MultiFernet(fernet_keys)

            if not Environment.is_production():
                logger.debug(f"Secret encryption initialized (key hash: {self._key_hash})")
        except Exception as e:
            raise ValueError(f"Invalid ENCRYPTION_KEY: {e}") from e

    @property
    def key_hash(self) -> str:
        """Return truncated hash of current key for identification."""
        return self._key_hash

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret and return the Fernet token as text."""
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a stored secret.

        Raises:
            ValueError: If the data was not encrypted with a known key
        """
        try:
            return self.cipher.decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Failed to decrypt mailbox secret (wrong ENCRYPTION_KEY?)") from e
