"""Prometheus metrics for MFA operations.

Usage:
    ```python
    from timehatch_mfa.observability import MfaMetrics

    with MfaMetrics.operation("mfa.verify"):
        outcome = await verifier.verify(...)
    ```
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter, Histogram

_logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Generator

    from ..audit.events import MfaAuditEvent


class _MfaMetricsRegistry:
    """Lazily creates the MFA collectors once per process."""

    def __init__(self) -> None:
        self._histogram: Any = None
        self._counter: Any = None
        self._events: Any = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        self._histogram = Histogram(
            "mfa_operation_duration_seconds",
            "MFA operation duration",
            ["operation"],
        )
        self._counter = Counter(
            "mfa_operations_total",
            "MFA operation count",
            ["operation", "result"],
        )
        self._events = Counter(
            "mfa_audit_events_total",
            "MFA audit events",
            ["event", "result"],
        )
        self._initialized = True

    @property
    def histogram(self) -> Any:
        self._ensure_initialized()
        return self._histogram

    @property
    def counter(self) -> Any:
        self._ensure_initialized()
        return self._counter

    @property
    def events(self) -> Any:
        self._ensure_initialized()
        return self._events


_registry = _MfaMetricsRegistry()


class MfaMetrics:
    """Helpers for recording MFA metrics."""

    @staticmethod
    @contextmanager
    def operation(operation: str) -> Generator[None, None, None]:
        """Time an operation and count it by result.

        Args:
            operation: RPC operation name, e.g. ``mfa.verify``.
        """
        result = "success"
        start = time.monotonic()
        try:
            yield
        except Exception:
            result = "error"
            raise
        finally:
            duration = time.monotonic() - start
            try:
                _registry.histogram.labels(operation=operation).observe(duration)
                _registry.counter.labels(operation=operation, result=result).inc()
            except Exception:  # noqa: BLE001
                _logger.debug("Failed to record operation metrics", exc_info=True)

    @staticmethod
    def record_event(event: MfaAuditEvent) -> None:
        try:
            _registry.events.labels(
                event=event.event_type.value,
                result="success" if event.success else "failure",
            ).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to record audit event metric", exc_info=True)


__all__: list[str] = ["MfaMetrics"]
