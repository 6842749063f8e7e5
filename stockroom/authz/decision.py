from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from stockroom.authz.requirements import PermissionRequirement
from stockroom.authz.resolver import EffectiveGrantSet


class DeniedReason(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    LACKS_PERMISSION = "lacks_permission"
    INVALID_CONTEXT = "invalid_context"


DENIAL_STATUS_CODES: dict[DeniedReason, int] = {
    DeniedReason.UNAUTHENTICATED: 401,
    DeniedReason.LACKS_PERMISSION: 403,
    DeniedReason.INVALID_CONTEXT: 403,
}

DENIAL_MESSAGES: dict[DeniedReason, str] = {
    DeniedReason.UNAUTHENTICATED: "authentication required",
    DeniedReason.LACKS_PERMISSION: "insufficient permissions or roles",
    DeniedReason.INVALID_CONTEXT: "access denied",
}


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: DeniedReason | None = None
    missing_permissions: tuple[str, ...] = ()
    missing_roles: tuple[str, ...] = ()

    @classmethod
    def allow(cls) -> AuthorizationDecision:
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        reason: DeniedReason,
        *,
        missing_permissions: Iterable[str] = (),
        missing_roles: Iterable[str] = (),
    ) -> AuthorizationDecision:
        return cls(
            allowed=False,
            reason=reason,
            missing_permissions=tuple(missing_permissions),
            missing_roles=tuple(missing_roles),
        )

    @property
    def status_code(self) -> int:
        if self.reason is None:
            return 200
        return DENIAL_STATUS_CODES[self.reason]

    @property
    def message(self) -> str:
        if self.reason is None:
            return "allowed"
        return DENIAL_MESSAGES[self.reason]

    def as_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": str(self.reason) if self.reason is not None else None,
            "message": self.message,
            "missing_permissions": list(self.missing_permissions),
            "missing_roles": list(self.missing_roles),
        }


class AuthorizationDenied(Exception):
    def __init__(self, decision: AuthorizationDecision, operation_id: str | None = None) -> None:
        super().__init__(decision.message)
        self.decision = decision
        self.operation_id = operation_id

    @property
    def reason(self) -> DeniedReason | None:
        return self.decision.reason


def missing_for(requirement: PermissionRequirement, grants: EffectiveGrantSet) -> tuple[list[str], list[str]]:
    missing_permissions: list[str] = []
    missing_roles: list[str] = []

    if requirement.required_roles and not any(role in grants.roles for role in requirement.required_roles):
        missing_roles = list(requirement.required_roles)

    if requirement.permissions:
        lacking = [code for code in requirement.permissions if code not in grants.permissions]
        if requirement.require_all:
            missing_permissions = lacking
        elif len(lacking) == len(requirement.permissions):
            missing_permissions = lacking

    return missing_permissions, missing_roles


def evaluate(
    requirements: Iterable[PermissionRequirement],
    grants: EffectiveGrantSet,
) -> AuthorizationDecision:
    missing_permissions: list[str] = []
    missing_roles: list[str] = []
    for requirement in requirements:
        if requirement.is_empty:
            continue
        lacking_permissions, lacking_roles = missing_for(requirement, grants)
        for code in lacking_permissions:
            if code not in missing_permissions:
                missing_permissions.append(code)
        for name in lacking_roles:
            if name not in missing_roles:
                missing_roles.append(name)

    if missing_permissions or missing_roles:
        return AuthorizationDecision.deny(
            DeniedReason.LACKS_PERMISSION,
            missing_permissions=missing_permissions,
            missing_roles=missing_roles,
        )
    return AuthorizationDecision.allow()
