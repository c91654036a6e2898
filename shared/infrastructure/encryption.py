"""
Encryption utilities

Provides encryption/decryption for secrets kept in the database, such as
LINE channel access tokens and channel secrets.
Uses Fernet (AES-128-CBC + HMAC-SHA256 symmetric encryption).
"""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings


class DecryptionError(ValueError):
    """Raised when a stored value cannot be decrypted with the current key."""


def get_encryption_key() -> bytes:
    """
    Get the Fernet key derived from settings.ENCRYPTION_KEY

    Any non-empty string is accepted; it is hashed down to the 32 bytes
    Fernet expects, so rotating the setting invalidates stored values.
    """
    key = getattr(settings, 'ENCRYPTION_KEY', None)

    if not key:
        raise ValueError(
            "ENCRYPTION_KEY not configured in settings. "
            "Generate one with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )

    if isinstance(key, str):
        key = key.encode()

    return base64.urlsafe_b64encode(hashlib.sha256(key).digest())


def encrypt_string(plaintext: str) -> str:
    if not plaintext:
        return ''

    fernet = Fernet(get_encryption_key())
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_string(encrypted: str) -> str:
    """
    Decrypt a string produced by encrypt_string.

    Raises DecryptionError when the token was produced with another key or
    has been tampered with.
    """
    if not encrypted:
        return ''

    fernet = Fernet(get_encryption_key())
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken as exc:
        raise DecryptionError("Stored value cannot be decrypted with ENCRYPTION_KEY") from exc
