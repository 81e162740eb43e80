"""Observability helpers for the MFA subsystem."""

from __future__ import annotations

from .metrics import MfaMetrics

__all__: list[str] = ["MfaMetrics"]
