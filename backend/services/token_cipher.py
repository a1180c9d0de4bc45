"""Fernet encryption for Plaid access tokens at rest."""

import logging

from cryptography.fernet import Fernet, InvalidToken

from config import settings

logger = logging.getLogger(__name__)


class TokenDecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the configured key."""

    pass


class TokenCipher:
    """Encrypts and decrypts access tokens with a single Fernet key."""

    def __init__(self, key: str | bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_settings(cls) -> "TokenCipher":
        """Build a cipher from ``TOKEN_ENCRYPTION_KEY``.

        Without a key, development gets an ephemeral one (tokens stored during
        this process become unreadable after restart); production refuses.
        """
        key = settings.TOKEN_ENCRYPTION_KEY
        if key:
            return cls(key)
        if settings.is_production:
            raise RuntimeError(
                "TOKEN_ENCRYPTION_KEY is required in production. Generate one with "
                "'python -m scripts.setup_credentials'."
            )
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set, using an ephemeral key. "
            "Stored access tokens will not survive a restart."
        )
        return cls(Fernet.generate_key())

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("Access token ciphertext is invalid or the key changed") from e
