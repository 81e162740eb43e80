"""MFA configuration.

Thresholds and keys are read once at startup. A missing or malformed
encryption key is a ``ConfigurationError``, never a per-request failure.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "TIMEHATCH_MFA_"

_INT_FIELDS: dict[str, str] = {
    "CHALLENGE_TTL": "challenge_ttl_seconds",
    "LOCKOUT_WINDOW": "lockout_window_seconds",
    "LOCKOUT_THRESHOLD": "lockout_threshold",
    "IP_LOCKOUT_THRESHOLD": "ip_lockout_threshold",
    "TRUSTED_DEVICE_TTL": "trusted_device_ttl_seconds",
    "ATTEMPT_RETENTION": "attempt_retention_seconds",
    "SESSION_TTL": "session_ttl_seconds",
}


@dataclass(frozen=True)
class MfaConfig:
    """MFA configuration.

    Attributes:
        encryption_key: Fernet key used to encrypt TOTP secrets at rest.
        device_signing_key: Key for hashing trusted-device tokens.
            Defaults to ``encryption_key``.
        issuer: Issuer shown in authenticator apps.
        challenge_ttl_seconds: Challenge lifetime.
        lockout_window_seconds: Rolling window for failed attempts.
        lockout_threshold: Consecutive failures per account before lockout.
        ip_lockout_threshold: Failures per IP (any account) before lockout.
        trusted_device_ttl_seconds: Trusted-device bypass lifetime.
        recovery_code_count: Codes per recovery batch.
        recovery_code_length: Characters per recovery code.
        totp_digits: Digits in a TOTP code.
        totp_interval: TOTP time step in seconds.
        totp_valid_window: Accepted steps on each side of the current one.
        attempt_retention_seconds: Age after which attempt records are swept.
        session_ttl_seconds: How long an MFA-satisfied session marker lives.
    """

    encryption_key: str
    device_signing_key: str | None = None
    issuer: str = "TimeHatch"

    challenge_ttl_seconds: int = 300  # 5 minutes
    lockout_window_seconds: int = 900  # 15 minutes
    lockout_threshold: int = 5
    ip_lockout_threshold: int = 20
    trusted_device_ttl_seconds: int = 2_592_000  # 30 days

    recovery_code_count: int = 10
    recovery_code_length: int = 8

    totp_digits: int = 6
    totp_interval: int = 30
    totp_valid_window: int = 1

    attempt_retention_seconds: int = 86_400  # 1 day
    session_ttl_seconds: int = 43_200  # 12 hours

    def __post_init__(self) -> None:
        if not self.encryption_key:
            raise ConfigurationError("An encryption key for factor secrets is required")
        try:
            Fernet(self.encryption_key.encode())
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                "Encryption key must be 32 url-safe base64-encoded bytes"
            ) from e

        for name in (
            "challenge_ttl_seconds",
            "lockout_window_seconds",
            "lockout_threshold",
            "ip_lockout_threshold",
            "trusted_device_ttl_seconds",
            "recovery_code_count",
            "totp_interval",
            "attempt_retention_seconds",
            "session_ttl_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.totp_digits not in (6, 8):
            raise ConfigurationError("totp_digits must be 6 or 8")
        if self.totp_valid_window < 0:
            raise ConfigurationError("totp_valid_window must not be negative")
        # 36**8 is just over 2**41
        if self.recovery_code_length < 8:
            raise ConfigurationError("recovery_code_length must be at least 8")

    @property
    def signing_key(self) -> bytes:
        """Key used for trusted-device token hashes."""
        return (self.device_signing_key or self.encryption_key).encode()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MfaConfig:
        """Build a config from ``TIMEHATCH_MFA_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Returns:
            Validated MfaConfig.

        Raises:
            ConfigurationError: If the key is missing or a value is not an integer.
        """
        env = os.environ if environ is None else environ

        key = env.get(f"{ENV_PREFIX}ENCRYPTION_KEY")
        if not key:
            raise ConfigurationError(f"{ENV_PREFIX}ENCRYPTION_KEY is not set")

        kwargs: dict[str, object] = {"encryption_key": key}
        if signing := env.get(f"{ENV_PREFIX}DEVICE_SIGNING_KEY"):
            kwargs["device_signing_key"] = signing
        if issuer := env.get(f"{ENV_PREFIX}ISSUER"):
            kwargs["issuer"] = issuer

        for suffix, field_name in _INT_FIELDS.items():
            raw = env.get(f"{ENV_PREFIX}{suffix}")
            if raw is None or raw == "":
                continue
            try:
                kwargs[field_name] = int(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"{ENV_PREFIX}{suffix} must be an integer, got {raw!r}"
                ) from e

        return cls(**kwargs)  # type: ignore[arg-type]


__all__: list[str] = ["ENV_PREFIX", "MfaConfig"]
