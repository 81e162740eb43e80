"""Request context for MFA calls.

Carries who is calling (the account already authenticated by the primary
identity provider) and from where. The context can be passed explicitly or
set for the current async task with ``set_request_context``.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """Caller metadata for one MFA request.

    Attributes:
        account_id: Account authenticated by the primary factor.
        session_id: Login session being upgraded to MFA-satisfied.
        request_id: Correlation ID for request tracing.
        ip_address: Client IP address.
        user_agent: Client user agent string.
    """

    account_id: str
    session_id: str | None = None
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "account_id": self.account_id,
            "session_id": self.session_id,
            "request_id": self.request_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


_request_context: ContextVar[RequestContext | None] = ContextVar(
    "mfa_request_context", default=None
)


def get_request_context() -> RequestContext | None:
    """Get the context set for the current async task, if any."""
    return _request_context.get()


def set_request_context(context: RequestContext) -> Token[RequestContext | None]:
    """Set the request context for the current async task.

    Returns:
        A Token for ``reset_request_context``.
    """
    return _request_context.set(context)


def reset_request_context(token: Token[RequestContext | None]) -> None:
    _request_context.reset(token)


__all__: list[str] = [
    "RequestContext",
    "get_request_context",
    "set_request_context",
    "reset_request_context",
]
