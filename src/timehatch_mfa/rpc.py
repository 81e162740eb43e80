"""RPC routing for the MFA operations.

``MfaRpcRouter.dispatch`` takes an operation name, a JSON-like payload and
the caller's ``RequestContext``, validates the payload with pydantic and
returns a JSON-serializable response:

    {"ok": true, ...operation fields}
    {"ok": false, "error": "InvalidCode", "message": "...", ...}

Secrets other than the ones an operation exists to hand out (the TOTP
secret on enroll start, recovery codes, a new device token) never appear
in responses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .domain import VerificationKind
from .exceptions import UnknownOperationError, ValidationError
from .service import MfaResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from .domain import AuthFactor, TrustedDevice
    from .request_context import RequestContext
    from .service import MfaService

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)


class AccountRequest(_Request):
    """Payload naming an account; defaults to the caller's account."""

    account_id: str | None = Field(default=None, min_length=1)


class EnrollStartRequest(AccountRequest):
    label: str | None = Field(default=None, max_length=200)
    friendly_name: str | None = Field(default=None, max_length=100)


class EnrollFinishRequest(_Request):
    factor_id: str = Field(min_length=1)
    code: str = Field(min_length=1, max_length=64)


class ChallengeRequest(_Request):
    factor_id: str = Field(min_length=1)


class VerifyRequest(_Request):
    challenge_id: str = Field(min_length=1)
    code: str = Field(min_length=1, max_length=64)
    kind: VerificationKind = VerificationKind.TOTP
    remember_device: bool = False


class DeviceCheckRequest(AccountRequest):
    device_token: str | None = None


class DeviceRevokeRequest(_Request):
    device_id: str = Field(min_length=1)


class SessionStatusRequest(_Request):
    device_token: str | None = None


def _validation_errors(exc: PydanticValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ())) or "__root__"
        errors.setdefault(loc, []).append(error.get("msg", "validation error"))
    return errors


# ═══════════════════════════════════════════════════════════════
# RESPONSE SHAPES
# ═══════════════════════════════════════════════════════════════


def _factor_view(factor: AuthFactor) -> dict[str, Any]:
    return {
        "id": factor.id,
        "type": factor.factor_type.value,
        "status": factor.status.value,
        "friendly_name": factor.friendly_name,
        "created_at": factor.created_at.isoformat(),
        "verified_at": factor.verified_at.isoformat() if factor.verified_at else None,
    }


def _device_view(device: TrustedDevice) -> dict[str, Any]:
    return {
        "id": device.id,
        "device_name": device.device_name,
        "created_at": device.created_at.isoformat(),
        "expires_at": device.expires_at.isoformat(),
        "last_seen_at": (
            device.last_seen_at.isoformat() if device.last_seen_at else None
        ),
    }


def _respond(
    result: MfaResult[Any], present: Callable[[Any], dict[str, Any]]
) -> dict[str, Any]:
    if not result.ok:
        response: dict[str, Any] = {
            "ok": False,
            "error": result.error,
            "message": result.message,
        }
        if result.retry_after is not None:
            response["retry_after"] = result.retry_after
        if result.errors:
            response["errors"] = result.errors
        return response
    return {"ok": True, **present(result.value)}


# ═══════════════════════════════════════════════════════════════
# ROUTER
# ═══════════════════════════════════════════════════════════════


class MfaRpcRouter:
    """Routes ``mfa.*`` operations to an ``MfaService``.

    Example:
        ```python
        router = MfaRpcRouter(service)
        response = await router.dispatch(
            "mfa.verify",
            {"challenge_id": cid, "code": "123456", "kind": "totp"},
            context,
        )
        ```
    """

    def __init__(self, service: MfaService) -> None:
        self._service = service
        self._routes: dict[
            str,
            tuple[
                type[BaseModel],
                Callable[[Any, RequestContext], Awaitable[dict[str, Any]]],
            ],
        ] = {
            "mfa.enroll.start": (EnrollStartRequest, self._enroll_start),
            "mfa.enroll.finish": (EnrollFinishRequest, self._enroll_finish),
            "mfa.challenge": (ChallengeRequest, self._challenge),
            "mfa.verify": (VerifyRequest, self._verify),
            "mfa.recovery.regenerate": (AccountRequest, self._recovery_regenerate),
            "mfa.recovery.remaining": (AccountRequest, self._recovery_remaining),
            "mfa.device.check": (DeviceCheckRequest, self._device_check),
            "mfa.device.add": (AccountRequest, self._device_add),
            "mfa.device.list": (AccountRequest, self._device_list),
            "mfa.device.revoke": (DeviceRevokeRequest, self._device_revoke),
            "mfa.device.revoke_all": (AccountRequest, self._device_revoke_all),
            "mfa.disable": (AccountRequest, self._disable),
            "mfa.session.status": (SessionStatusRequest, self._session_status),
            "mfa.factors.list": (AccountRequest, self._factors_list),
        }

    @property
    def operations(self) -> list[str]:
        return sorted(self._routes)

    async def dispatch(
        self,
        operation: str,
        payload: Mapping[str, Any] | None,
        context: RequestContext,
    ) -> dict[str, Any]:
        """Validate ``payload`` and run ``operation`` for the caller."""
        route = self._routes.get(operation)
        if route is None:
            logger.info("Rejected unknown MFA operation %r", operation)
            return _respond(MfaResult.failure(UnknownOperationError(operation)), dict)

        model, handler = route
        try:
            request = model.model_validate(dict(payload or {}))
        except PydanticValidationError as exc:
            return _respond(
                MfaResult.failure(ValidationError(_validation_errors(exc))), dict
            )
        if (
            isinstance(request, AccountRequest)
            and request.account_id is not None
            and request.account_id != context.account_id
        ):
            error = ValidationError({"account_id": ["Does not match the caller"]})
            return _respond(MfaResult.failure(error), dict)
        return await handler(request, context)

    # ── handlers ────────────────────────────────────────────────

    @staticmethod
    def _account(request: AccountRequest, context: RequestContext) -> str:
        return request.account_id or context.account_id

    async def _enroll_start(
        self, request: EnrollStartRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.start_enrollment(
            self._account(request, context),
            label=request.label,
            friendly_name=request.friendly_name,
            context=context,
        )
        return _respond(
            result,
            lambda start: {
                "factor_id": start.factor_id,
                "secret": start.secret,
                "provisioning_uri": start.provisioning_uri,
            },
        )

    async def _enroll_finish(
        self, request: EnrollFinishRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.finish_enrollment(
            request.factor_id, request.code, context
        )
        return _respond(result, lambda codes: {"recovery_codes": codes})

    async def _challenge(
        self, request: ChallengeRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.challenge(request.factor_id, context)
        return _respond(
            result,
            lambda issued: {
                "challenge_id": issued.challenge_id,
                "expires_at": issued.expires_at.isoformat(),
            },
        )

    async def _verify(
        self, request: VerifyRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.verify(
            request.challenge_id,
            request.code,
            request.kind,
            context,
            remember_device=request.remember_device,
        )

        def present(verified: Any) -> dict[str, Any]:
            body: dict[str, Any] = {"kind": verified.outcome.kind.value}
            if verified.outcome.remaining_recovery_codes is not None:
                remaining = verified.outcome.remaining_recovery_codes
                body["remaining_recovery_codes"] = remaining
            if verified.device is not None:
                body["device_token"] = verified.device.token
                body["device_expires_at"] = verified.device.expires_at.isoformat()
            return body

        return _respond(result, present)

    async def _recovery_regenerate(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.regenerate_recovery_codes(
            self._account(request, context), context
        )
        return _respond(result, lambda codes: {"recovery_codes": codes})

    async def _recovery_remaining(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.remaining_recovery_codes(
            self._account(request, context)
        )
        return _respond(result, lambda count: {"remaining": count})

    async def _device_check(
        self, request: DeviceCheckRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.check_device(
            self._account(request, context), request.device_token
        )
        return _respond(result, lambda trusted: {"trusted": trusted})

    async def _device_add(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.add_device(
            self._account(request, context), context
        )
        return _respond(
            result,
            lambda grant: {
                "device_token": grant.token,
                "device_id": grant.device_id,
                "expires_at": grant.expires_at.isoformat(),
            },
        )

    async def _device_list(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.list_devices(self._account(request, context))
        return _respond(
            result, lambda devices: {"devices": [_device_view(d) for d in devices]}
        )

    async def _device_revoke(
        self, request: DeviceRevokeRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.revoke_device(
            context.account_id, request.device_id, context
        )
        return _respond(result, lambda _: {})

    async def _device_revoke_all(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.revoke_all_devices(
            self._account(request, context), context
        )
        return _respond(result, lambda revoked: {"revoked": revoked})

    async def _disable(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.disable(self._account(request, context), context)
        return _respond(result, lambda _: {})

    async def _session_status(
        self, request: SessionStatusRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.session_status(
            context, device_token=request.device_token
        )
        return _respond(result, lambda state: {"state": state.value})

    async def _factors_list(
        self, request: AccountRequest, context: RequestContext
    ) -> dict[str, Any]:
        result = await self._service.list_factors(self._account(request, context))
        return _respond(
            result, lambda factors: {"factors": [_factor_view(f) for f in factors]}
        )


__all__: list[str] = [
    "MfaRpcRouter",
    "AccountRequest",
    "EnrollStartRequest",
    "EnrollFinishRequest",
    "ChallengeRequest",
    "VerifyRequest",
    "DeviceCheckRequest",
    "DeviceRevokeRequest",
    "SessionStatusRequest",
]
