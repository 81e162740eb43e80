"""Secret encryption and one-way hashes.

- TOTP secrets are encrypted at rest with Fernet (AES-128-CBC + HMAC).
- Recovery codes are stored as the SHA-256 hex digest of the normalized code.
- Trusted-device tokens are stored as an HMAC-SHA256 keyed with the device
  signing key, so a leaked table cannot be replayed without the key.
"""

from __future__ import annotations

import hashlib
import hmac

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import ConfigurationError


class SecretCipher:
    """Encrypts and decrypts TOTP secrets.

    Args:
        key: Fernet key (32 url-safe base64-encoded bytes).

    Raises:
        ConfigurationError: If the key is malformed.
    """

    def __init__(self, key: str | bytes) -> None:
        raw = key.encode() if isinstance(key, str) else key
        try:
            self._fernet = Fernet(raw)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                "Encryption key must be 32 url-safe base64-encoded bytes"
            ) from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored secret.

        Raises:
            ConfigurationError: If the ciphertext was not produced with the
                configured key (the key was rotated or replaced).
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise ConfigurationError(
                "Stored factor secret cannot be decrypted with the configured key"
            ) from e


def normalize_recovery_code(candidate: str) -> str:
    """Strip whitespace and dashes and upper-case."""
    return candidate.strip().upper().replace(" ", "").replace("-", "")


def hash_recovery_code(code: str) -> str:
    """SHA-256 hex digest of a recovery code (normalized first)."""
    return hashlib.sha256(normalize_recovery_code(code).encode()).hexdigest()


def hash_device_token(signing_key: bytes, token: str) -> str:
    """Keyed HMAC-SHA256 hex digest of a trusted-device token."""
    return hmac.new(signing_key, token.encode(), hashlib.sha256).hexdigest()


__all__: list[str] = [
    "SecretCipher",
    "normalize_recovery_code",
    "hash_recovery_code",
    "hash_device_token",
]
