"""Security notices sent to the account owner after sensitive MFA changes."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .ports import IMfaNotificationHook
    from .request_context import RequestContext

logger = logging.getLogger(__name__)


class SecurityNotice(str, Enum):
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    RECOVERY_CODE_USED = "recovery_code_used"


class SecurityNotifier:
    """Calls the application's notification hook, if one is configured.

    Delivery failures are logged; they never fail the MFA operation.
    """

    def __init__(self, hook: IMfaNotificationHook | None = None) -> None:
        self._hook = hook

    async def notify(
        self,
        account_id: str,
        notice: SecurityNotice,
        context: RequestContext | None = None,
        **details: Any,
    ) -> None:
        if self._hook is None:
            return
        payload: dict[str, Any] = dict(details)
        if context is not None:
            payload.setdefault("ip_address", context.ip_address)
            payload.setdefault("user_agent", context.user_agent)
        try:
            await self._hook.send_security_notice(account_id, notice, payload)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to send %s notice for account %s", notice.value, account_id
            )


__all__: list[str] = ["SecurityNotice", "SecurityNotifier"]
