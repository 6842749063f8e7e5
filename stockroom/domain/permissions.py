from __future__ import annotations

from typing import Any

PERM_TENANT_READ = "tenant.read"
PERM_TENANT_WRITE = "tenant.write"
PERM_USER_READ = "user.read"
PERM_USER_WRITE = "user.write"
PERM_ROLE_READ = "role.read"
PERM_ROLE_WRITE = "role.write"
PERM_POLICY_READ = "policy.read"
PERM_POLICY_WRITE = "policy.write"
PERM_PERMISSION_READ = "permission.read"
PERM_PERMISSION_WRITE = "permission.write"
PERM_INVENTORY_VIEW = "inventory.view"
PERM_INVENTORY_CREATE = "inventory.create"
PERM_INVENTORY_UPDATE = "inventory.update"
PERM_INVENTORY_DELETE = "inventory.delete"

ROLE_ADMIN = "admin"

DEFAULT_PERMISSIONS: tuple[tuple[str, str], ...] = (
    (PERM_TENANT_READ, "tenant"),
    (PERM_TENANT_WRITE, "tenant"),
    (PERM_USER_READ, "user"),
    (PERM_USER_WRITE, "user"),
    (PERM_ROLE_READ, "role"),
    (PERM_ROLE_WRITE, "role"),
    (PERM_POLICY_READ, "policy"),
    (PERM_POLICY_WRITE, "policy"),
    (PERM_PERMISSION_READ, "permission"),
    (PERM_PERMISSION_WRITE, "permission"),
    (PERM_INVENTORY_VIEW, "inventory"),
    (PERM_INVENTORY_CREATE, "inventory"),
    (PERM_INVENTORY_UPDATE, "inventory"),
    (PERM_INVENTORY_DELETE, "inventory"),
)

DEFAULT_PERMISSION_CODES = [code for code, _group in DEFAULT_PERMISSIONS]

POLICY_TEMPLATES: tuple[dict[str, Any], ...] = (
    {
        "name": "InventoryReader",
        "description": "read-only inventory access",
        "permissions": [PERM_INVENTORY_VIEW],
    },
    {
        "name": "InventoryAdmin",
        "description": "full inventory management",
        "permissions": [
            PERM_INVENTORY_VIEW,
            PERM_INVENTORY_CREATE,
            PERM_INVENTORY_UPDATE,
            PERM_INVENTORY_DELETE,
        ],
    },
    {
        "name": "TenantAdmin",
        "description": "tenant, user, role and policy administration",
        "permissions": [
            PERM_TENANT_READ,
            PERM_TENANT_WRITE,
            PERM_USER_READ,
            PERM_USER_WRITE,
            PERM_ROLE_READ,
            PERM_ROLE_WRITE,
            PERM_POLICY_READ,
            PERM_POLICY_WRITE,
            PERM_PERMISSION_READ,
            PERM_PERMISSION_WRITE,
        ],
    },
)


def normalize_permission_code(code: str) -> str:
    return code.strip().lower()
