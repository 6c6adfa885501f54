"""
Symmetric encryption helpers for the Federated Login service.

Used for values that travel through the client but must stay opaque to it:
the single sign-on target cookie, the Twitter request-token cookie and the
credentials claim embedded in service tokens when the identity store is off.
"""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

_SALT = b"federated_login_salt"
_ITERATIONS = 100000


class DecryptionError(ValueError):
    """Raised when a value cannot be decrypted with the configured key."""


@lru_cache(maxsize=32)
def _create_fernet(secret: str) -> Fernet:
    """
    Create a Fernet cipher instance for a secret.

    Args:
        secret: Master key or provider secret to derive the cipher key from

    Returns:
        Fernet cipher instance
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_SALT,
        iterations=_ITERATIONS,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
    return Fernet(key)


class Encryptor:
    """Encrypts and decrypts strings with a key derived from a secret."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("An encryption secret is required")
        self._fernet = _create_fernet(secret)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: Value to encrypt

        Returns:
            URL-safe ciphertext
        """
        if not isinstance(plaintext, str):
            raise TypeError("plaintext must be a string.")
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a string produced by :meth:`encrypt`.

        Raises:
            DecryptionError: if the value was tampered with or uses another key
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise DecryptionError("Unable to decrypt value") from e


def derive_signing_key(secret: str, suffix: str = "JWTSig") -> bytes:
    """HS256 signing key: SHA-256 of the secret followed by the suffix."""
    return hashlib.sha256((secret + suffix).encode("utf-8")).digest()
