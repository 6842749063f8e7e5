"""
Authorization interceptor.

Per guarded call: Pending (requirements read) -> Resolving (grants looked up
for the bound tenant context) -> Allowed or Denied. A denied call never runs
its body. Transport failures of the grant store are not denials and propagate
unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any

from stockroom.authz.decision import (
    AuthorizationDecision,
    AuthorizationDenied,
    DeniedReason,
    evaluate,
)
from stockroom.authz.requirements import PermissionRegistry, PermissionRequirement, registry
from stockroom.authz.resolver import (
    InvalidContextError,
    PermissionResolver,
    ResolutionCancelledError,
)
from stockroom.infra.tenant import TenantContext, current_context

AUTHZ_RESOLVE_TIMEOUT_SECONDS = float(os.getenv("AUTHZ_RESOLVE_TIMEOUT_SECONDS", "0"))

logger = logging.getLogger(__name__)


class AuthorizationInterceptor:
    def __init__(
        self,
        resolver: PermissionResolver,
        *,
        requirements: PermissionRegistry | None = None,
        resolve_timeout_seconds: float | None = None,
    ) -> None:
        self.resolver = resolver
        self.requirements = requirements if requirements is not None else registry
        timeout = AUTHZ_RESOLVE_TIMEOUT_SECONDS if resolve_timeout_seconds is None else resolve_timeout_seconds
        self.resolve_timeout_seconds = timeout if timeout > 0 else None

    def _active_requirements(self, operation_id: str) -> tuple[PermissionRequirement, ...]:
        return tuple(item for item in self.requirements.requirements_for(operation_id) if not item.is_empty)

    def _deadline(self) -> float | None:
        if self.resolve_timeout_seconds is None:
            return None
        return time.monotonic() + self.resolve_timeout_seconds

    def authorize(self, operation_id: str, context: TenantContext | None) -> AuthorizationDecision:
        requirements = self._active_requirements(operation_id)
        if not requirements:
            return AuthorizationDecision.allow()

        if context is None or not context.is_authenticated:
            decision = AuthorizationDecision.deny(DeniedReason.UNAUTHENTICATED)
        else:
            try:
                grants = self.resolver.resolve(
                    str(context.user_id),
                    str(context.tenant_id),
                    deadline=self._deadline(),
                )
            except (InvalidContextError, ResolutionCancelledError) as exc:
                logger.warning(
                    "authorization context could not be resolved: %s",
                    exc,
                    extra={"operation": operation_id, "tenant_id": context.tenant_id, "user_id": context.user_id},
                )
                decision = AuthorizationDecision.deny(DeniedReason.INVALID_CONTEXT)
            else:
                decision = evaluate(requirements, grants)

        self._log_decision(operation_id, context, decision)
        return decision

    def _log_decision(
        self,
        operation_id: str,
        context: TenantContext | None,
        decision: AuthorizationDecision,
    ) -> None:
        extra = {
            "operation": operation_id,
            "tenant_id": context.tenant_id if context is not None else None,
            "user_id": context.user_id if context is not None else None,
            "reason": str(decision.reason) if decision.reason is not None else None,
        }
        if decision.allowed:
            logger.debug("authorization allowed", extra=extra)
            return
        logger.info(
            "authorization denied: missing permissions=%s roles=%s",
            list(decision.missing_permissions),
            list(decision.missing_roles),
            extra=extra,
        )

    def check(self, operation_id: str, context: TenantContext | None = None) -> None:
        decision = self.authorize(operation_id, context if context is not None else current_context())
        if not decision.allowed:
            raise AuthorizationDenied(decision, operation_id)

    def intercept(
        self,
        operation_id: str,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        self.check(operation_id)
        return func(*args, **kwargs)

    async def intercept_async(
        self,
        operation_id: str,
        func: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        context = current_context()
        # Resolution does blocking store I/O; the body waits for the verdict.
        await asyncio.to_thread(self.check, operation_id, context)
        return await func(*args, **kwargs)
