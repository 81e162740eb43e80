"""TOTP (RFC 6238) helpers.

Works with any TOTP-compatible authenticator app (Google Authenticator,
Authy, 1Password...). Uses pyotp internally; the current time is always
passed in so callers control the clock.
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

import pyotp

if TYPE_CHECKING:
    from datetime import datetime


class TotpCodec:
    """Generates secrets and matches codes against time steps.

    Args:
        issuer: Application name shown in authenticator apps.
        digits: Number of digits in a code.
        interval: Time step in seconds.
        valid_window: Accept codes ±N steps for clock drift.
    """

    def __init__(
        self,
        *,
        issuer: str = "TimeHatch",
        digits: int = 6,
        interval: int = 30,
        valid_window: int = 1,
    ) -> None:
        self.issuer = issuer
        self.digits = digits
        self.interval = interval
        self.valid_window = valid_window

    @staticmethod
    def generate_secret() -> str:
        """Random base32 secret (32 characters, 160 bits)."""
        return pyotp.random_base32()

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.digits, interval=self.interval)

    def provisioning_uri(self, secret: str, label: str) -> str:
        """otpauth:// URI for QR code rendering."""
        return self._totp(secret).provisioning_uri(name=label, issuer_name=self.issuer)

    def is_well_formed(self, code: str) -> bool:
        # str.isdigit also accepts non-ASCII digits such as Arabic-Indic ones.
        return len(code) == self.digits and code.isascii() and code.isdigit()

    def match_step(self, secret: str, code: str, now: datetime) -> int | None:
        """Find the time step ``code`` belongs to.

        Only steps within ``valid_window`` of the current step are tried.

        Returns:
            The matching time step counter, or None if the code is wrong.
        """
        totp = self._totp(secret)
        current = totp.timecode(now)
        for offset in range(-self.valid_window, self.valid_window + 1):
            step = current + offset
            if hmac.compare_digest(totp.generate_otp(step), code):
                return step
        return None


__all__: list[str] = ["TotpCodec"]
