"""
Effective grant resolution.

Walks user -> tenant membership -> roles -> role policies -> policy
permissions and flattens the result into an ``EffectiveGrantSet``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import exc as sa_exc
from sqlalchemy import true
from sqlmodel import Session, col, or_, select

from stockroom.domain.models import (
    Permission,
    Policy,
    PolicyPermission,
    Role,
    RolePolicy,
    Tenant,
    User,
    UserRole,
    UserTenant,
)
from stockroom.infra.db import get_engine

if TYPE_CHECKING:
    from stockroom.authz.cache import GrantCache

logger = logging.getLogger(__name__)

# Connection failures and pool checkout timeouts.
TRANSPORT_ERRORS = (sa_exc.DBAPIError, sa_exc.TimeoutError)


@dataclass(frozen=True)
class EffectiveGrantSet:
    permissions: frozenset[str] = field(default_factory=frozenset)
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, permissions: Iterable[str] = (), roles: Iterable[str] = ()) -> EffectiveGrantSet:
        return cls(permissions=frozenset(permissions), roles=frozenset(roles))

    @property
    def is_empty(self) -> bool:
        return not self.permissions and not self.roles


class ResolutionError(Exception):
    pass


class InvalidContextError(ResolutionError):
    """Tenant does not exist, or the user is not an active member of it."""


class ResolutionCancelledError(ResolutionError):
    """The resolution deadline passed before all lookups completed."""


class GrantStoreUnavailableError(ResolutionError):
    """The backing store failed at the transport level; safe to retry."""


class GrantStore(Protocol):
    def tenant_exists(self, tenant_id: str) -> bool: ...

    def is_member(self, user_id: str, tenant_id: str) -> bool: ...

    def roles_for_user(self, user_id: str, tenant_id: str) -> list[Role]: ...

    def policies_for_role(self, role_id: str) -> list[Policy]: ...

    def permissions_for_policy(self, policy_id: str) -> list[Permission]: ...


class SqlGrantStore:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def tenant_exists(self, tenant_id: str) -> bool:
        try:
            with self._session() as session:
                return session.get(Tenant, tenant_id) is not None
        except TRANSPORT_ERRORS as exc:
            raise GrantStoreUnavailableError("tenant lookup failed") from exc

    def is_member(self, user_id: str, tenant_id: str) -> bool:
        statement = (
            select(UserTenant)
            .join(User, col(User.id) == col(UserTenant.user_id))
            .where(UserTenant.tenant_id == tenant_id)
            .where(UserTenant.user_id == user_id)
            .where(User.is_active == true())
        )
        try:
            with self._session() as session:
                return session.exec(statement).first() is not None
        except TRANSPORT_ERRORS as exc:
            raise GrantStoreUnavailableError("membership lookup failed") from exc

    def roles_for_user(self, user_id: str, tenant_id: str) -> list[Role]:
        statement = (
            select(Role)
            .join(UserRole, col(UserRole.role_id) == col(Role.id))
            .where(UserRole.tenant_id == tenant_id)
            .where(UserRole.user_id == user_id)
            .where(or_(col(Role.tenant_id) == tenant_id, col(Role.tenant_id).is_(None)))
        )
        try:
            with self._session() as session:
                return list(session.exec(statement).all())
        except TRANSPORT_ERRORS as exc:
            raise GrantStoreUnavailableError("role lookup failed") from exc

    def policies_for_role(self, role_id: str) -> list[Policy]:
        statement = (
            select(Policy)
            .join(RolePolicy, col(RolePolicy.policy_id) == col(Policy.id))
            .where(RolePolicy.role_id == role_id)
        )
        try:
            with self._session() as session:
                return list(session.exec(statement).all())
        except TRANSPORT_ERRORS as exc:
            raise GrantStoreUnavailableError("policy lookup failed") from exc

    def permissions_for_policy(self, policy_id: str) -> list[Permission]:
        statement = (
            select(Permission)
            .join(PolicyPermission, col(PolicyPermission.permission_id) == col(Permission.id))
            .where(PolicyPermission.policy_id == policy_id)
        )
        try:
            with self._session() as session:
                return list(session.exec(statement).all())
        except TRANSPORT_ERRORS as exc:
            raise GrantStoreUnavailableError("permission lookup failed") from exc


class PermissionResolver:
    def __init__(self, store: GrantStore, cache: GrantCache | None = None) -> None:
        self.store = store
        self.cache = cache

    def _check_deadline(self, deadline: float | None) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise ResolutionCancelledError("grant resolution deadline exceeded")

    def resolve(self, user_id: str, tenant_id: str, *, deadline: float | None = None) -> EffectiveGrantSet:
        generation = ""
        if self.cache is not None:
            # Read before resolving so an invalidation during resolution wins.
            generation = self.cache.generation()
            cached = self.cache.get(generation, tenant_id, user_id)
            if cached is not None:
                return cached

        if not self.store.tenant_exists(tenant_id):
            raise InvalidContextError(f"tenant {tenant_id} not found")
        self._check_deadline(deadline)
        if not self.store.is_member(user_id, tenant_id):
            raise InvalidContextError(f"user {user_id} is not an active member of tenant {tenant_id}")
        self._check_deadline(deadline)

        role_names: set[str] = set()
        permission_codes: set[str] = set()
        seen_policies: set[str] = set()
        for role in self.store.roles_for_user(user_id, tenant_id):
            role_names.add(role.name)
            self._check_deadline(deadline)
            for policy in self.store.policies_for_role(role.id):
                if policy.id in seen_policies:
                    continue
                seen_policies.add(policy.id)
                self._check_deadline(deadline)
                permission_codes.update(item.code for item in self.store.permissions_for_policy(policy.id))

        grants = EffectiveGrantSet.of(permissions=permission_codes, roles=role_names)
        logger.debug(
            "resolved %d permissions and %d roles",
            len(grants.permissions),
            len(grants.roles),
            extra={"tenant_id": tenant_id, "user_id": user_id},
        )
        if self.cache is not None:
            self.cache.set(generation, tenant_id, user_id, grants)
        return grants

    def user_permissions(self, user_id: str, tenant_id: str) -> list[str]:
        return sorted(self.resolve(user_id, tenant_id).permissions)

    def has_permission(self, user_id: str, tenant_id: str, permission: str) -> bool:
        return permission in self.resolve(user_id, tenant_id).permissions

    def has_any_permission(self, user_id: str, tenant_id: str, permissions: Iterable[str]) -> bool:
        granted = self.resolve(user_id, tenant_id).permissions
        return any(item in granted for item in permissions)
