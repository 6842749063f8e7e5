from __future__ import annotations

import hashlib
import os
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from stockroom.authz.cache import GrantCache, build_grant_cache
from stockroom.authz.lazy import Interceptor
from stockroom.authz.requirements import PermissionRequirement, registry, requires_permission, requires_role
from stockroom.authz.resolver import EffectiveGrantSet, PermissionResolver, SqlGrantStore
from stockroom.domain.models import (
    BootstrapAdminRequest,
    MembershipCreate,
    Permission,
    PermissionCreate,
    PermissionUpdate,
    Policy,
    PolicyCreate,
    PolicyPermission,
    PolicyUpdate,
    Role,
    RoleCreate,
    RolePolicy,
    RoleUpdate,
    Tenant,
    TenantCreate,
    TenantUpdate,
    User,
    UserCreate,
    UserRole,
    UserTenant,
    UserUpdate,
)
from stockroom.domain.permissions import (
    DEFAULT_PERMISSIONS,
    PERM_PERMISSION_READ,
    PERM_PERMISSION_WRITE,
    PERM_POLICY_READ,
    PERM_POLICY_WRITE,
    PERM_ROLE_READ,
    PERM_ROLE_WRITE,
    PERM_TENANT_READ,
    PERM_TENANT_WRITE,
    PERM_USER_READ,
    PERM_USER_WRITE,
    POLICY_TEMPLATES,
    ROLE_ADMIN,
    normalize_permission_code,
)
from stockroom.infra.db import get_engine

ROLE_SYSTEM_ADMIN = "system-admin"


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class IdentityService:
    def __init__(
        self,
        interceptor: Interceptor | None = None,
        grant_cache: GrantCache | None = None,
    ) -> None:
        self.authorization_interceptor = interceptor
        self._grant_cache = grant_cache if grant_cache is not None else build_grant_cache()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "stockroom-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _invalidate_grants(self) -> None:
        # Any change to the role/policy graph or to memberships can change effective grants.
        if self._grant_cache is not None:
            self._grant_cache.invalidate_all()

    def _ensure_default_permissions(self, session: Session) -> dict[str, Permission]:
        existing = {item.code: item for item in session.exec(select(Permission)).all()}
        created: list[Permission] = []
        for code, group in DEFAULT_PERMISSIONS:
            if code in existing:
                continue
            permission = Permission(code=code, group=group, description=f"default permission {code}")
            session.add(permission)
            created.append(permission)
        if created:
            session.commit()
            for permission in created:
                session.refresh(permission)
                existing[permission.code] = permission
        return existing

    def _get_member(self, session: Session, tenant_id: str, user_id: str) -> UserTenant | None:
        return session.get(UserTenant, (tenant_id, user_id))

    def _get_scoped_user(self, session: Session, tenant_id: str, user_id: str) -> User | None:
        if self._get_member(session, tenant_id, user_id) is None:
            return None
        return session.get(User, user_id)

    def _get_scoped_role(self, session: Session, tenant_id: str, role_id: str) -> Role | None:
        statement = select(Role).where(Role.id == role_id).where(Role.tenant_id == tenant_id)
        return session.exec(statement).first()

    def _get_visible_role(self, session: Session, tenant_id: str, role_id: str) -> Role | None:
        statement = (
            select(Role)
            .where(Role.id == role_id)
            .where(or_(col(Role.tenant_id) == tenant_id, col(Role.tenant_id).is_(None)))
        )
        return session.exec(statement).first()

    def _get_scoped_policy(self, session: Session, tenant_id: str, policy_id: str) -> Policy | None:
        statement = select(Policy).where(Policy.id == policy_id).where(Policy.tenant_id == tenant_id)
        return session.exec(statement).first()

    def _get_visible_policy(self, session: Session, tenant_id: str, policy_id: str) -> Policy | None:
        statement = (
            select(Policy)
            .where(Policy.id == policy_id)
            .where(or_(col(Policy.tenant_id) == tenant_id, col(Policy.tenant_id).is_(None)))
        )
        return session.exec(statement).first()

    def _ensure_tenant_role_name(self, name: str) -> None:
        # Role checks match by name, so a tenant role must never shadow the global operator role.
        if name.strip().lower() == ROLE_SYSTEM_ADMIN:
            raise ConflictError("role name is reserved")

    def _commit_or_conflict(self, session: Session, message: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(message) from exc

    # Tenants

    def create_tenant(self, payload: TenantCreate) -> Tenant:
        with self._session() as session:
            if payload.parent_tenant_id is not None and session.get(Tenant, payload.parent_tenant_id) is None:
                raise NotFoundError("parent tenant not found")
            tenant = Tenant(
                name=payload.name,
                description=payload.description,
                parent_tenant_id=payload.parent_tenant_id,
            )
            session.add(tenant)
            self._commit_or_conflict(session, "tenant name already exists")
            session.refresh(tenant)
            return tenant

    @requires_permission(PERM_TENANT_READ)
    def list_tenants(self, user_id: str) -> list[Tenant]:
        with self._session() as session:
            statement = (
                select(Tenant)
                .join(UserTenant, col(UserTenant.tenant_id) == col(Tenant.id))
                .where(UserTenant.user_id == user_id)
                .order_by(col(Tenant.name))
            )
            return list(session.exec(statement).all())

    @requires_permission(PERM_TENANT_READ)
    def get_tenant(self, tenant_id: str) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            return tenant

    @requires_permission(PERM_TENANT_WRITE)
    def update_tenant(self, tenant_id: str, payload: TenantUpdate) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            if payload.name is not None:
                tenant.name = payload.name
            if payload.description is not None:
                tenant.description = payload.description
            session.add(tenant)
            self._commit_or_conflict(session, "tenant name already exists")
            session.refresh(tenant)
            return tenant

    @requires_role(ROLE_ADMIN)
    @requires_permission(PERM_TENANT_WRITE)
    def delete_tenant(self, tenant_id: str) -> None:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            session.delete(tenant)
            self._commit_or_conflict(session, "tenant still has child tenants")
        self._invalidate_grants()

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            tenant = session.get(Tenant, payload.tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            members = session.exec(select(UserTenant).where(UserTenant.tenant_id == payload.tenant_id)).first()
            if members is not None:
                raise ConflictError("tenant already initialized")
            if session.exec(select(User).where(User.username == payload.username)).first() is not None:
                raise ConflictError("username already exists")

            permissions = self._ensure_default_permissions(session)
            admin_role = Role(tenant_id=payload.tenant_id, name=ROLE_ADMIN, description="bootstrap admin role")
            admin_user = User(
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=True,
            )
            session.add(admin_role)
            session.add(admin_user)
            policies: list[Policy] = []
            for template in POLICY_TEMPLATES:
                policy = Policy(
                    tenant_id=payload.tenant_id,
                    name=str(template["name"]),
                    description=str(template["description"]),
                )
                session.add(policy)
                policies.append(policy)
            try:
                session.flush()
                for policy, template in zip(policies, POLICY_TEMPLATES, strict=True):
                    session.add(RolePolicy(role_id=admin_role.id, policy_id=policy.id))
                    for code in template["permissions"]:
                        session.add(PolicyPermission(policy_id=policy.id, permission_id=permissions[code].id))
                session.add(UserTenant(tenant_id=payload.tenant_id, user_id=admin_user.id, is_admin=True))
                session.add(UserRole(tenant_id=payload.tenant_id, user_id=admin_user.id, role_id=admin_role.id))
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant already initialized") from exc
            session.refresh(admin_user)
        self._invalidate_grants()
        return admin_user

    # Users and memberships

    @requires_permission(PERM_USER_WRITE)
    def create_user(self, tenant_id: str, payload: UserCreate) -> User:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            user = User(
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=payload.is_active,
            )
            session.add(user)
            self._commit_or_conflict(session, "username already exists")
            session.refresh(user)
            session.add(UserTenant(tenant_id=tenant_id, user_id=user.id))
            session.commit()
        self._invalidate_grants()
        return user

    @requires_permission(PERM_USER_WRITE)
    def add_member(self, tenant_id: str, payload: MembershipCreate) -> UserTenant:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None or session.get(User, payload.user_id) is None:
                raise NotFoundError("tenant or user not found")
            existing = self._get_member(session, tenant_id, payload.user_id)
            if existing is not None:
                return existing
            membership = UserTenant(tenant_id=tenant_id, user_id=payload.user_id, is_admin=payload.is_admin)
            session.add(membership)
            session.commit()
            session.refresh(membership)
        self._invalidate_grants()
        return membership

    @requires_permission(PERM_USER_WRITE)
    def remove_member(self, tenant_id: str, user_id: str) -> None:
        with self._session() as session:
            membership = self._get_member(session, tenant_id, user_id)
            if membership is None:
                raise NotFoundError("membership not found")
            session.execute(
                sa.delete(UserRole).where(col(UserRole.tenant_id) == tenant_id).where(col(UserRole.user_id) == user_id)
            )
            session.delete(membership)
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_USER_READ)
    def list_members(self, tenant_id: str) -> list[UserTenant]:
        with self._session() as session:
            return list(session.exec(select(UserTenant).where(UserTenant.tenant_id == tenant_id)).all())

    @requires_permission(PERM_USER_READ)
    def list_users(self, tenant_id: str) -> list[User]:
        with self._session() as session:
            statement = (
                select(User)
                .join(UserTenant, col(UserTenant.user_id) == col(User.id))
                .where(UserTenant.tenant_id == tenant_id)
                .order_by(col(User.username))
            )
            return list(session.exec(statement).all())

    @requires_permission(PERM_USER_READ)
    def get_user(self, tenant_id: str, user_id: str) -> User:
        with self._session() as session:
            user = self._get_scoped_user(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    @requires_permission(PERM_USER_WRITE)
    def update_user(self, tenant_id: str, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            if self._get_scoped_user(session, tenant_id, user_id) is None:
                raise NotFoundError("user not found")
            other_membership = session.exec(
                select(UserTenant).where(UserTenant.user_id == user_id).where(UserTenant.tenant_id != tenant_id)
            ).first()
        if other_membership is not None:
            return self.update_shared_user(tenant_id, user_id, payload)
        return self._apply_user_update(tenant_id, user_id, payload)

    @requires_role(ROLE_SYSTEM_ADMIN)
    @requires_permission(PERM_USER_WRITE)
    def update_shared_user(self, tenant_id: str, user_id: str, payload: UserUpdate) -> User:
        # Credentials of a user who also belongs to other tenants are not one tenant's to change.
        return self._apply_user_update(tenant_id, user_id, payload)

    def _apply_user_update(self, tenant_id: str, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            user = self._get_scoped_user(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if payload.password is not None:
                user.password_hash = self._hash_password(payload.password)
            if payload.is_active is not None:
                user.is_active = payload.is_active
            session.add(user)
            session.commit()
            session.refresh(user)
        self._invalidate_grants()
        return user

    # Roles

    @requires_permission(PERM_ROLE_WRITE)
    def create_role(self, tenant_id: str, payload: RoleCreate) -> Role:
        if payload.is_global:
            return self.create_global_role(tenant_id, payload)
        self._ensure_tenant_role_name(payload.name)
        with self._session() as session:
            role = Role(tenant_id=tenant_id, name=payload.name, description=payload.description)
            session.add(role)
            self._commit_or_conflict(session, "role name already exists in tenant")
            session.refresh(role)
        self._invalidate_grants()
        return role

    @requires_role(ROLE_SYSTEM_ADMIN)
    @requires_permission(PERM_ROLE_WRITE)
    def create_global_role(self, tenant_id: str, payload: RoleCreate) -> Role:
        with self._session() as session:
            duplicate = session.exec(
                select(Role).where(col(Role.tenant_id).is_(None)).where(Role.name == payload.name)
            ).first()
            if duplicate is not None:
                raise ConflictError("global role name already exists")
            role = Role(tenant_id=None, name=payload.name, description=payload.description)
            session.add(role)
            session.commit()
            session.refresh(role)
        self._invalidate_grants()
        return role

    @requires_permission(PERM_ROLE_READ)
    def list_roles(self, tenant_id: str) -> list[Role]:
        with self._session() as session:
            statement = (
                select(Role)
                .where(or_(col(Role.tenant_id) == tenant_id, col(Role.tenant_id).is_(None)))
                .order_by(col(Role.name))
            )
            return list(session.exec(statement).all())

    @requires_permission(PERM_ROLE_READ)
    def get_role(self, tenant_id: str, role_id: str) -> Role:
        with self._session() as session:
            role = self._get_visible_role(session, tenant_id, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role

    @requires_permission(PERM_ROLE_WRITE)
    def update_role(self, tenant_id: str, role_id: str, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = self._get_scoped_role(session, tenant_id, role_id)
            if role is None:
                raise NotFoundError("role not found")
            if payload.name is not None:
                self._ensure_tenant_role_name(payload.name)
                role.name = payload.name
            if payload.description is not None:
                role.description = payload.description
            session.add(role)
            self._commit_or_conflict(session, "role name already exists in tenant")
            session.refresh(role)
        self._invalidate_grants()
        return role

    @requires_permission(PERM_ROLE_WRITE)
    def delete_role(self, tenant_id: str, role_id: str) -> None:
        with self._session() as session:
            role = self._get_scoped_role(session, tenant_id, role_id)
            if role is None:
                raise NotFoundError("role not found")
            session.execute(sa.delete(RolePolicy).where(col(RolePolicy.role_id) == role_id))
            session.execute(sa.delete(UserRole).where(col(UserRole.role_id) == role_id))
            session.delete(role)
            session.commit()
        self._invalidate_grants()

    # Policies

    @requires_permission(PERM_POLICY_WRITE)
    def create_policy(self, tenant_id: str, payload: PolicyCreate) -> Policy:
        if payload.is_global:
            return self.create_global_policy(tenant_id, payload)
        with self._session() as session:
            policy = Policy(tenant_id=tenant_id, name=payload.name, description=payload.description)
            session.add(policy)
            self._commit_or_conflict(session, "policy name already exists in tenant")
            session.refresh(policy)
        self._invalidate_grants()
        return policy

    @requires_role(ROLE_SYSTEM_ADMIN)
    @requires_permission(PERM_POLICY_WRITE)
    def create_global_policy(self, tenant_id: str, payload: PolicyCreate) -> Policy:
        with self._session() as session:
            duplicate = session.exec(
                select(Policy).where(col(Policy.tenant_id).is_(None)).where(Policy.name == payload.name)
            ).first()
            if duplicate is not None:
                raise ConflictError("global policy name already exists")
            policy = Policy(tenant_id=None, name=payload.name, description=payload.description)
            session.add(policy)
            session.commit()
            session.refresh(policy)
        self._invalidate_grants()
        return policy

    @requires_permission(PERM_POLICY_READ)
    def list_policies(self, tenant_id: str) -> list[Policy]:
        with self._session() as session:
            statement = (
                select(Policy)
                .where(or_(col(Policy.tenant_id) == tenant_id, col(Policy.tenant_id).is_(None)))
                .order_by(col(Policy.name))
            )
            return list(session.exec(statement).all())

    @requires_permission(PERM_POLICY_READ)
    def get_policy(self, tenant_id: str, policy_id: str) -> Policy:
        with self._session() as session:
            policy = self._get_visible_policy(session, tenant_id, policy_id)
            if policy is None:
                raise NotFoundError("policy not found")
            return policy

    @requires_permission(PERM_POLICY_WRITE)
    def update_policy(self, tenant_id: str, policy_id: str, payload: PolicyUpdate) -> Policy:
        with self._session() as session:
            policy = self._get_scoped_policy(session, tenant_id, policy_id)
            if policy is None:
                raise NotFoundError("policy not found")
            if payload.name is not None:
                policy.name = payload.name
            if payload.description is not None:
                policy.description = payload.description
            session.add(policy)
            self._commit_or_conflict(session, "policy name already exists in tenant")
            session.refresh(policy)
        self._invalidate_grants()
        return policy

    @requires_permission(PERM_POLICY_WRITE)
    def delete_policy(self, tenant_id: str, policy_id: str) -> None:
        with self._session() as session:
            policy = self._get_scoped_policy(session, tenant_id, policy_id)
            if policy is None:
                raise NotFoundError("policy not found")
            session.execute(sa.delete(RolePolicy).where(col(RolePolicy.policy_id) == policy_id))
            session.execute(sa.delete(PolicyPermission).where(col(PolicyPermission.policy_id) == policy_id))
            session.delete(policy)
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_POLICY_READ)
    def list_policy_permissions(self, tenant_id: str, policy_id: str) -> list[Permission]:
        with self._session() as session:
            if self._get_visible_policy(session, tenant_id, policy_id) is None:
                raise NotFoundError("policy not found")
            statement = (
                select(Permission)
                .join(PolicyPermission, col(PolicyPermission.permission_id) == col(Permission.id))
                .where(PolicyPermission.policy_id == policy_id)
                .order_by(col(Permission.code))
            )
            return list(session.exec(statement).all())

    # Permissions

    @requires_role(ROLE_SYSTEM_ADMIN)
    @requires_permission(PERM_PERMISSION_WRITE)
    def create_permission(self, payload: PermissionCreate) -> Permission:
        with self._session() as session:
            permission = Permission(
                code=normalize_permission_code(payload.code),
                description=payload.description,
                group=payload.group,
            )
            session.add(permission)
            self._commit_or_conflict(session, "permission code already exists")
            session.refresh(permission)
        self._invalidate_grants()
        return permission

    @requires_permission(PERM_PERMISSION_READ)
    def list_permissions(self) -> list[Permission]:
        with self._session() as session:
            return list(session.exec(select(Permission).order_by(col(Permission.code))).all())

    @requires_permission(PERM_PERMISSION_READ)
    def get_permission(self, permission_id: str) -> Permission:
        with self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            return permission

    @requires_role(ROLE_SYSTEM_ADMIN)
    @requires_permission(PERM_PERMISSION_WRITE)
    def update_permission(self, permission_id: str, payload: PermissionUpdate) -> Permission:
        with self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            if payload.code is not None:
                permission.code = normalize_permission_code(payload.code)
            if payload.description is not None:
                permission.description = payload.description
            if payload.group is not None:
                permission.group = payload.group
            session.add(permission)
            self._commit_or_conflict(session, "permission code already exists")
            session.refresh(permission)
        self._invalidate_grants()
        return permission

    @requires_role(ROLE_SYSTEM_ADMIN)
    @requires_permission(PERM_PERMISSION_WRITE)
    def delete_permission(self, permission_id: str) -> None:
        with self._session() as session:
            permission = session.get(Permission, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            session.execute(sa.delete(PolicyPermission).where(col(PolicyPermission.permission_id) == permission_id))
            session.delete(permission)
            session.commit()
        self._invalidate_grants()

    # Bindings

    @requires_permission(PERM_ROLE_WRITE, PERM_POLICY_READ, require_all=True)
    def bind_role_policy(self, tenant_id: str, role_id: str, policy_id: str) -> None:
        with self._session() as session:
            role = self._get_scoped_role(session, tenant_id, role_id)
            policy = self._get_visible_policy(session, tenant_id, policy_id)
            if role is None or policy is None:
                raise NotFoundError("role or policy not found")
            if session.get(RolePolicy, (role_id, policy_id)) is not None:
                return
            session.add(RolePolicy(role_id=role_id, policy_id=policy_id))
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_ROLE_WRITE)
    def unbind_role_policy(self, tenant_id: str, role_id: str, policy_id: str) -> None:
        with self._session() as session:
            if self._get_scoped_role(session, tenant_id, role_id) is None:
                raise NotFoundError("role not found")
            link = session.get(RolePolicy, (role_id, policy_id))
            if link is None:
                return
            session.delete(link)
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_POLICY_WRITE, PERM_PERMISSION_READ, require_all=True)
    def bind_policy_permission(self, tenant_id: str, policy_id: str, permission_id: str) -> None:
        with self._session() as session:
            policy = self._get_scoped_policy(session, tenant_id, policy_id)
            permission = session.get(Permission, permission_id)
            if policy is None or permission is None:
                raise NotFoundError("policy or permission not found")
            if session.get(PolicyPermission, (policy_id, permission_id)) is not None:
                return
            session.add(PolicyPermission(policy_id=policy_id, permission_id=permission_id))
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_POLICY_WRITE)
    def unbind_policy_permission(self, tenant_id: str, policy_id: str, permission_id: str) -> None:
        with self._session() as session:
            if self._get_scoped_policy(session, tenant_id, policy_id) is None:
                raise NotFoundError("policy not found")
            link = session.get(PolicyPermission, (policy_id, permission_id))
            if link is None:
                return
            session.delete(link)
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_USER_WRITE, PERM_ROLE_READ, require_all=True)
    def bind_user_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._session() as session:
            role = self._get_visible_role(session, tenant_id, role_id)
        if role is not None and role.name == ROLE_SYSTEM_ADMIN:
            self.bind_system_admin_role(tenant_id, user_id, role_id)
            return
        self._add_user_role(tenant_id, user_id, role_id)

    @requires_role(ROLE_SYSTEM_ADMIN)
    def bind_system_admin_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        self._add_user_role(tenant_id, user_id, role_id)

    def bootstrap_system_admin(self, tenant_id: str, user_id: str) -> Role:
        """Grant the global operator role to an existing member.

        Unguarded and not routed: this is the operator's seeding step, the
        same way ``bootstrap_admin`` seeds the first tenant admin.
        """
        with self._session() as session:
            if self._get_member(session, tenant_id, user_id) is None:
                raise NotFoundError("membership not found")
            role = session.exec(
                select(Role).where(col(Role.tenant_id).is_(None)).where(Role.name == ROLE_SYSTEM_ADMIN)
            ).first()
            if role is None:
                role = Role(tenant_id=None, name=ROLE_SYSTEM_ADMIN, description="platform operator role")
                session.add(role)
                session.commit()
                session.refresh(role)
        self._add_user_role(tenant_id, user_id, role.id)
        return role

    def _add_user_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._session() as session:
            member = self._get_member(session, tenant_id, user_id)
            role = self._get_visible_role(session, tenant_id, role_id)
            if member is None or role is None:
                raise NotFoundError("user or role not found")
            if session.get(UserRole, (tenant_id, user_id, role_id)) is not None:
                return
            session.add(UserRole(tenant_id=tenant_id, user_id=user_id, role_id=role_id))
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_USER_WRITE)
    def unbind_user_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        with self._session() as session:
            if self._get_member(session, tenant_id, user_id) is None:
                raise NotFoundError("user not found")
            assignment = session.get(UserRole, (tenant_id, user_id, role_id))
            if assignment is None:
                return
            session.delete(assignment)
            session.commit()
        self._invalidate_grants()

    @requires_permission(PERM_USER_READ)
    def list_user_roles(self, tenant_id: str, user_id: str) -> list[Role]:
        with self._session() as session:
            if self._get_member(session, tenant_id, user_id) is None:
                raise NotFoundError("user not found")
            statement = (
                select(Role)
                .join(UserRole, col(UserRole.role_id) == col(Role.id))
                .where(UserRole.tenant_id == tenant_id)
                .where(UserRole.user_id == user_id)
                .order_by(col(Role.name))
            )
            return list(session.exec(statement).all())

    # Authentication

    def effective_grants(self, tenant_id: str, user_id: str) -> EffectiveGrantSet:
        resolver = PermissionResolver(SqlGrantStore(), cache=self._grant_cache)
        return resolver.resolve(user_id, tenant_id)

    def dev_login(self, tenant_id: str, username: str, password: str) -> tuple[User, EffectiveGrantSet]:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None or user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if self._get_member(session, tenant_id, user.id) is None:
                raise AuthError("invalid credentials")
        return user, self.effective_grants(tenant_id, user.id)

    def describe_grants(self, tenant_id: str, user_id: str) -> dict[str, Any]:
        grants = self.effective_grants(tenant_id, user_id)
        return {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "permissions": sorted(grants.permissions),
            "roles": sorted(grants.roles),
        }

    @requires_permission(PERM_PERMISSION_READ)
    def guarded_operations(self) -> dict[str, tuple[PermissionRequirement, ...]]:
        return registry.operations()
