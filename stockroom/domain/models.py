from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    parent_tenant_id: str | None = Field(default=None, foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserTenant(SQLModel, table=True):
    __tablename__ = "user_tenants"
    __table_args__ = (
        Index("ix_user_tenants_user", "user_id"),
    )

    tenant_id: str = Field(foreign_key="tenants.id", primary_key=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    is_admin: bool = Field(default=False)
    joined_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    # None marks a global role that can be assigned inside any tenant.
    tenant_id: str | None = Field(default=None, foreign_key="tenants.id", index=True, ondelete="CASCADE")
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Policy(SQLModel, table=True):
    __tablename__ = "policies"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_policies_tenant_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str | None = Field(default=None, foreign_key="tenants.id", index=True, ondelete="CASCADE")
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    description: str | None = None
    group: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePolicy(SQLModel, table=True):
    __tablename__ = "role_policies"

    role_id: str = Field(foreign_key="roles.id", primary_key=True, ondelete="CASCADE")
    policy_id: str = Field(foreign_key="policies.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class PolicyPermission(SQLModel, table=True):
    __tablename__ = "policy_permissions"

    policy_id: str = Field(foreign_key="policies.id", primary_key=True, ondelete="CASCADE")
    permission_id: str = Field(foreign_key="permissions.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        Index("ix_user_roles_tenant_user", "tenant_id", "user_id"),
        Index("ix_user_roles_tenant_role", "tenant_id", "role_id"),
    )

    tenant_id: str = Field(foreign_key="tenants.id", primary_key=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    role_id: str = Field(foreign_key="roles.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class InventoryCategory(SQLModel, table=True):
    __tablename__ = "inventory_categories"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_inventory_categories_tenant_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True, ondelete="CASCADE")
    name: str = Field(max_length=100, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class InventoryItem(SQLModel, table=True):
    __tablename__ = "inventory_items"
    __table_args__ = (
        Index("ix_inventory_items_tenant_category", "tenant_id", "category_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True, ondelete="CASCADE")
    category_id: str = Field(foreign_key="inventory_categories.id", ondelete="CASCADE")
    name: str = Field(max_length=255, index=True)
    purchase_price: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    condition: str = Field(max_length=50)
    purchase_date: date | None = None
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TenantCreate(BaseModel):
    name: str
    description: str | None = None
    parent_tenant_id: str | None = None


class TenantUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class TenantRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    parent_tenant_id: str | None = None
    created_at: datetime


class UserCreate(BaseModel):
    username: str
    password: str
    is_active: bool = True


class UserUpdate(BaseModel):
    password: str | None = None
    is_active: bool | None = None


class UserRead(ORMReadModel):
    id: str
    username: str
    is_active: bool
    created_at: datetime


class MembershipCreate(BaseModel):
    user_id: str
    is_admin: bool = False


class MembershipRead(ORMReadModel):
    tenant_id: str
    user_id: str
    is_admin: bool
    joined_at: datetime


class RoleCreate(BaseModel):
    name: str
    description: str | None = None
    is_global: bool = False


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class RoleRead(ORMReadModel):
    id: str
    tenant_id: str | None = None
    name: str
    description: str | None = None
    created_at: datetime


class PolicyCreate(BaseModel):
    name: str
    description: str | None = None
    is_global: bool = False


class PolicyUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class PolicyRead(ORMReadModel):
    id: str
    tenant_id: str | None = None
    name: str
    description: str | None = None
    created_at: datetime


class PermissionCreate(BaseModel):
    code: str
    description: str | None = None
    group: str | None = None


class PermissionUpdate(BaseModel):
    code: str | None = None
    description: str | None = None
    group: str | None = None


class PermissionRead(ORMReadModel):
    id: str
    code: str
    description: str | None = None
    group: str | None = None
    created_at: datetime


class DevLoginRequest(BaseModel):
    tenant_id: str
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    tenant_id: str
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str]
    roles: list[str]


class EffectiveGrantsRead(BaseModel):
    tenant_id: str
    user_id: str
    permissions: list[str]
    roles: list[str]


class RequirementRead(BaseModel):
    permissions: list[str]
    required_roles: list[str]
    require_all: bool


class GuardedOperationRead(BaseModel):
    operation: str
    requirements: list[RequirementRead]


class InventoryCategoryCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=100)


class InventoryCategoryUpdate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=100)


class InventoryCategoryRead(ORMReadModel):
    id: str
    tenant_id: str
    name: str
    created_at: datetime


class InventoryItemCreate(BaseModel):
    name: str = PydanticField(min_length=1, max_length=255)
    category_id: str
    purchase_price: Decimal = PydanticField(default=Decimal("0"), ge=0)
    condition: str = PydanticField(min_length=1, max_length=50)
    purchase_date: date | None = None
    attributes: dict[str, Any] = PydanticField(default_factory=dict)


class InventoryItemUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=1, max_length=255)
    category_id: str | None = None
    purchase_price: Decimal | None = PydanticField(default=None, ge=0)
    condition: str | None = PydanticField(default=None, min_length=1, max_length=50)
    purchase_date: date | None = None
    attributes: dict[str, Any] | None = None


class InventoryItemRead(ORMReadModel):
    id: str
    tenant_id: str
    category_id: str
    name: str
    purchase_price: Decimal
    condition: str
    purchase_date: date | None = None
    attributes: dict[str, Any]
    created_at: datetime
    updated_at: datetime
