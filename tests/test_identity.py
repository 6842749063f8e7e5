from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from stockroom import main as app_main
from stockroom.authz import cache as cache_module
from stockroom.authz.cache import GENERATION_KEY
from stockroom.authz.lazy import default_interceptor
from stockroom.domain.models import AuditLog, UserRole
from stockroom.domain.permissions import DEFAULT_PERMISSION_CODES
from stockroom.infra import db, redis_state
from stockroom.services.identity_service import IdentityService


@pytest.fixture()
def identity_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "identity_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _create_tenant(client: TestClient, name: str) -> str:
    response = client.post("/api/identity/tenants", json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]


def _bootstrap_admin(client: TestClient, tenant_id: str, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _login(client: TestClient, tenant_id: str, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def _create_user(client: TestClient, token: str, username: str, password: str) -> str:
    response = client.post(
        "/api/identity/users",
        json={"username": username, "password": password, "is_active": True},
        headers=_auth_header(token),
    )
    assert response.status_code == 201
    return response.json()["id"]


def _policy_id(client: TestClient, token: str, name: str) -> str:
    response = client.get("/api/identity/policies", headers=_auth_header(token))
    assert response.status_code == 200
    return next(item["id"] for item in response.json() if item["name"] == name)


def _latest_audit(tenant_id: str, action: str, *, status_code: int | None = None) -> AuditLog:
    with Session(db.get_engine(), expire_on_commit=False) as session:
        statement = select(AuditLog).where(AuditLog.tenant_id == tenant_id).where(AuditLog.action == action)
        if status_code is not None:
            statement = statement.where(AuditLog.status_code == status_code)
        rows = list(session.exec(statement).all())
    assert rows
    return sorted(rows, key=lambda item: item.ts)[-1]


def test_bootstrap_admin_grants_full_default_set(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")

    response = identity_client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_id, "username": "admin", "password": "admin-pass"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert sorted(body["permissions"]) == sorted(DEFAULT_PERMISSION_CODES)
    assert body["roles"] == ["admin"]

    audit_row = _latest_audit("system", "identity.bootstrap_admin", status_code=201)
    assert audit_row.resource == f"tenant:{tenant_id}"
    assert audit_row.detail["result"]["outcome"] == "success"
    assert "authorization" not in audit_row.detail

    again = identity_client.post(
        "/api/identity/bootstrap-admin",
        json={"tenant_id": tenant_id, "username": "admin2", "password": "x"},
    )
    assert again.status_code == 409


def test_dev_login_rejects_bad_password_and_foreign_tenant(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    _bootstrap_admin(identity_client, tenant_a, "admin_a", "pass-a")

    wrong_password = identity_client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_a, "username": "admin_a", "password": "nope"},
    )
    assert wrong_password.status_code == 401

    wrong_tenant = identity_client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_b, "username": "admin_a", "password": "pass-a"},
    )
    assert wrong_tenant.status_code == 401


def test_identity_tenant_isolation(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    _bootstrap_admin(identity_client, tenant_a, "admin_a", "pass-a")
    _bootstrap_admin(identity_client, tenant_b, "admin_b", "pass-b")
    token_a = _login(identity_client, tenant_a, "admin_a", "pass-a")
    token_b = _login(identity_client, tenant_b, "admin_b", "pass-b")

    alice_id = _create_user(identity_client, token_a, "alice", "alice-pass")

    cross_tenant = identity_client.get(f"/api/identity/users/{alice_id}", headers=_auth_header(token_b))
    assert cross_tenant.status_code == 404

    other_tenant = identity_client.get(f"/api/identity/tenants/{tenant_a}", headers=_auth_header(token_b))
    assert other_tenant.status_code == 404

    own = identity_client.get(f"/api/identity/users/{alice_id}", headers=_auth_header(token_a))
    assert own.status_code == 200
    assert own.json()["username"] == "alice"


def test_user_without_roles_is_denied_with_missing_codes(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    _create_user(identity_client, admin_token, "bob", "bob-pass")
    bob_token = _login(identity_client, tenant_id, "bob", "bob-pass")

    response = identity_client.get("/api/identity/roles", headers=_auth_header(bob_token))
    assert response.status_code == 403
    authorization = response.json()["authorization"]
    assert authorization["reason"] == "lacks_permission"
    assert authorization["missing_permissions"] == ["role.read"]

    audit_row = _latest_audit(tenant_id, "GET:/api/identity/roles", status_code=403)
    assert audit_row.detail["authorization"]["reason"] == "lacks_permission"
    assert audit_row.detail["result"]["outcome"] == "denied"


def test_role_policy_binding_grants_and_revokes_access(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    carol_id = _create_user(identity_client, admin_token, "carol", "carol-pass")

    role_resp = identity_client.post(
        "/api/identity/roles",
        json={"name": "Auditor", "description": "reads identity data"},
        headers=_auth_header(admin_token),
    )
    assert role_resp.status_code == 201
    role_id = role_resp.json()["id"]

    policy_resp = identity_client.post(
        "/api/identity/policies",
        json={"name": "RoleViewer"},
        headers=_auth_header(admin_token),
    )
    assert policy_resp.status_code == 201
    policy_id = policy_resp.json()["id"]

    permissions = identity_client.get("/api/identity/permissions", headers=_auth_header(admin_token)).json()
    role_read_id = next(item["id"] for item in permissions if item["code"] == "role.read")

    for path in (
        f"/api/identity/policies/{policy_id}/permissions/{role_read_id}",
        f"/api/identity/roles/{role_id}/policies/{policy_id}",
        f"/api/identity/users/{carol_id}/roles/{role_id}",
    ):
        bind_resp = identity_client.post(path, headers=_auth_header(admin_token))
        assert bind_resp.status_code == 204

    carol_token = _login(identity_client, tenant_id, "carol", "carol-pass")
    allowed = identity_client.get("/api/identity/roles", headers=_auth_header(carol_token))
    assert allowed.status_code == 200
    assert {item["name"] for item in allowed.json()} == {"admin", "Auditor"}

    with Session(db.get_engine()) as session:
        rows = session.exec(select(UserRole).where(UserRole.user_id == carol_id)).all()
        assert [row.role_id for row in rows] == [role_id]

    unbind = identity_client.delete(
        f"/api/identity/roles/{role_id}/policies/{policy_id}",
        headers=_auth_header(admin_token),
    )
    assert unbind.status_code == 204
    revoked = identity_client.get("/api/identity/roles", headers=_auth_header(carol_token))
    assert revoked.status_code == 403


def test_binding_user_role_needs_both_permissions(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    dave_id = _create_user(identity_client, admin_token, "dave", "dave-pass")

    role_id = identity_client.post(
        "/api/identity/roles",
        json={"name": "UserWriter"},
        headers=_auth_header(admin_token),
    ).json()["id"]
    policy_id = identity_client.post(
        "/api/identity/policies",
        json={"name": "UserWrite"},
        headers=_auth_header(admin_token),
    ).json()["id"]
    permissions = identity_client.get("/api/identity/permissions", headers=_auth_header(admin_token)).json()
    user_write_id = next(item["id"] for item in permissions if item["code"] == "user.write")
    identity_client.post(
        f"/api/identity/policies/{policy_id}/permissions/{user_write_id}",
        headers=_auth_header(admin_token),
    )
    identity_client.post(f"/api/identity/roles/{role_id}/policies/{policy_id}", headers=_auth_header(admin_token))
    identity_client.post(f"/api/identity/users/{dave_id}/roles/{role_id}", headers=_auth_header(admin_token))

    dave_token = _login(identity_client, tenant_id, "dave", "dave-pass")
    response = identity_client.post(
        f"/api/identity/users/{dave_id}/roles/{role_id}",
        headers=_auth_header(dave_token),
    )
    assert response.status_code == 403
    assert response.json()["authorization"]["missing_permissions"] == ["role.read"]


def test_tenant_delete_requires_admin_role(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    erin_id = _create_user(identity_client, admin_token, "erin", "erin-pass")

    role_id = identity_client.post(
        "/api/identity/roles",
        json={"name": "TenantOperator"},
        headers=_auth_header(admin_token),
    ).json()["id"]
    tenant_admin_policy = _policy_id(identity_client, admin_token, "TenantAdmin")
    identity_client.post(
        f"/api/identity/roles/{role_id}/policies/{tenant_admin_policy}",
        headers=_auth_header(admin_token),
    )
    identity_client.post(f"/api/identity/users/{erin_id}/roles/{role_id}", headers=_auth_header(admin_token))
    erin_token = _login(identity_client, tenant_id, "erin", "erin-pass")

    denied = identity_client.delete(f"/api/identity/tenants/{tenant_id}", headers=_auth_header(erin_token))
    assert denied.status_code == 403
    assert denied.json()["authorization"]["missing_roles"] == ["admin"]
    assert denied.json()["authorization"]["missing_permissions"] == []

    renamed = identity_client.patch(
        f"/api/identity/tenants/{tenant_id}",
        json={"description": "renamed by operator"},
        headers=_auth_header(erin_token),
    )
    assert renamed.status_code == 200
    assert renamed.json()["description"] == "renamed by operator"

    deleted = identity_client.delete(f"/api/identity/tenants/{tenant_id}", headers=_auth_header(admin_token))
    assert deleted.status_code == 204


def test_global_role_needs_system_admin(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    admin_id = _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")

    response = identity_client.post(
        "/api/identity/roles",
        json={"name": "Everywhere", "is_global": True},
        headers=_auth_header(admin_token),
    )
    assert response.status_code == 403
    assert response.json()["authorization"]["missing_roles"] == ["system-admin"]

    IdentityService().bootstrap_system_admin(tenant_id, admin_id)
    created = identity_client.post(
        "/api/identity/roles",
        json={"name": "Everywhere", "is_global": True},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    assert created.json()["tenant_id"] is None


def test_removed_member_token_becomes_invalid_context(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    frank_id = _create_user(identity_client, admin_token, "frank", "frank-pass")
    frank_token = _login(identity_client, tenant_id, "frank", "frank-pass")

    removed = identity_client.delete(f"/api/identity/memberships/{frank_id}", headers=_auth_header(admin_token))
    assert removed.status_code == 204

    response = identity_client.get("/api/identity/roles", headers=_auth_header(frank_token))
    assert response.status_code == 403
    body = response.json()
    assert body["detail"] == "access denied"
    assert body["authorization"]["reason"] == "invalid_context"
    assert body["authorization"]["missing_permissions"] == []


def test_unauthenticated_and_invalid_token(identity_client: TestClient) -> None:
    anonymous = identity_client.get("/api/identity/roles")
    assert anonymous.status_code == 401
    assert anonymous.json()["authorization"]["reason"] == "unauthenticated"

    audit_row = _latest_audit("system", "GET:/api/identity/roles", status_code=401)
    assert audit_row.actor_id is None

    bad_token = identity_client.get("/api/identity/roles", headers=_auth_header("not-a-jwt"))
    assert bad_token.status_code == 401
    assert bad_token.json()["detail"] == "Invalid token"


def test_permission_codes_are_normalized(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    admin_id = _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    IdentityService().bootstrap_system_admin(tenant_id, admin_id)
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")

    created = identity_client.post(
        "/api/identity/permissions",
        json={"code": "  Reports.Export ", "group": "reports"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    assert created.json()["code"] == "reports.export"

    duplicate = identity_client.post(
        "/api/identity/permissions",
        json={"code": "reports.export"},
        headers=_auth_header(admin_token),
    )
    assert duplicate.status_code == 409


def test_list_tenants_returns_caller_memberships(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    _create_tenant(identity_client, "tenant-c")
    admin_a_id = _bootstrap_admin(identity_client, tenant_a, "admin_a", "pass-a")
    _bootstrap_admin(identity_client, tenant_b, "admin_b", "pass-b")
    token_a = _login(identity_client, tenant_a, "admin_a", "pass-a")
    token_b = _login(identity_client, tenant_b, "admin_b", "pass-b")

    only_own = identity_client.get("/api/identity/tenants", headers=_auth_header(token_a))
    assert only_own.status_code == 200
    assert [item["name"] for item in only_own.json()] == ["tenant-a"]

    joined = identity_client.post(
        "/api/identity/memberships",
        json={"user_id": admin_a_id},
        headers=_auth_header(token_b),
    )
    assert joined.status_code == 201

    both = identity_client.get("/api/identity/tenants", headers=_auth_header(token_a))
    assert [item["name"] for item in both.json()] == ["tenant-a", "tenant-b"]

    anonymous = identity_client.get("/api/identity/tenants")
    assert anonymous.status_code == 401


def test_tenant_admin_cannot_rewrite_shared_permissions(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    _bootstrap_admin(identity_client, tenant_a, "admin_a", "pass-a")
    _bootstrap_admin(identity_client, tenant_b, "admin_b", "pass-b")
    token_a = _login(identity_client, tenant_a, "admin_a", "pass-a")
    token_b = _login(identity_client, tenant_b, "admin_b", "pass-b")

    permissions = identity_client.get("/api/identity/permissions", headers=_auth_header(token_b)).json()
    view_id = next(item["id"] for item in permissions if item["code"] == "inventory.view")

    renamed = identity_client.patch(
        f"/api/identity/permissions/{view_id}",
        json={"code": "gone"},
        headers=_auth_header(token_b),
    )
    assert renamed.status_code == 403
    assert renamed.json()["authorization"]["missing_roles"] == ["system-admin"]

    deleted = identity_client.delete(f"/api/identity/permissions/{view_id}", headers=_auth_header(token_b))
    assert deleted.status_code == 403

    created = identity_client.post(
        "/api/identity/permissions",
        json={"code": "reports.export"},
        headers=_auth_header(token_b),
    )
    assert created.status_code == 403

    still_allowed = identity_client.get("/api/inventory/categories", headers=_auth_header(token_a))
    assert still_allowed.status_code == 200


def test_system_admin_role_cannot_be_claimed_by_tenant_admin(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    operator_id = _bootstrap_admin(identity_client, tenant_a, "operator", "operator-pass")
    admin_b_id = _bootstrap_admin(identity_client, tenant_b, "admin_b", "pass-b")
    system_role = IdentityService().bootstrap_system_admin(tenant_a, operator_id)
    operator_token = _login(identity_client, tenant_a, "operator", "operator-pass")
    token_b = _login(identity_client, tenant_b, "admin_b", "pass-b")

    shadow = identity_client.post(
        "/api/identity/roles",
        json={"name": "System-Admin"},
        headers=_auth_header(token_b),
    )
    assert shadow.status_code == 409

    claimed = identity_client.post(
        f"/api/identity/users/{admin_b_id}/roles/{system_role.id}",
        headers=_auth_header(token_b),
    )
    assert claimed.status_code == 403
    assert claimed.json()["authorization"]["missing_roles"] == ["system-admin"]

    helper_id = _create_user(identity_client, operator_token, "helper", "helper-pass")
    granted = identity_client.post(
        f"/api/identity/users/{helper_id}/roles/{system_role.id}",
        headers=_auth_header(operator_token),
    )
    assert granted.status_code == 204


def test_tenant_admin_cannot_reset_credentials_of_shared_user(identity_client: TestClient) -> None:
    tenant_a = _create_tenant(identity_client, "tenant-a")
    tenant_b = _create_tenant(identity_client, "tenant-b")
    alice_id = _bootstrap_admin(identity_client, tenant_a, "alice", "alice-pass")
    _bootstrap_admin(identity_client, tenant_b, "admin_b", "pass-b")
    token_b = _login(identity_client, tenant_b, "admin_b", "pass-b")

    joined = identity_client.post(
        "/api/identity/memberships",
        json={"user_id": alice_id},
        headers=_auth_header(token_b),
    )
    assert joined.status_code == 201

    for payload in ({"password": "taken-over"}, {"is_active": False}):
        reset = identity_client.patch(
            f"/api/identity/users/{alice_id}",
            json=payload,
            headers=_auth_header(token_b),
        )
        assert reset.status_code == 403
        assert reset.json()["authorization"]["missing_roles"] == ["system-admin"]

    _login(identity_client, tenant_a, "alice", "alice-pass")
    hijack = identity_client.post(
        "/api/identity/dev-login",
        json={"tenant_id": tenant_a, "username": "alice", "password": "taken-over"},
    )
    assert hijack.status_code == 401

    own_id = _create_user(identity_client, token_b, "bruno", "bruno-pass")
    changed = identity_client.patch(
        f"/api/identity/users/{own_id}",
        json={"password": "bruno-new"},
        headers=_auth_header(token_b),
    )
    assert changed.status_code == 200
    _login(identity_client, tenant_b, "bruno", "bruno-new")


def test_disabled_user_token_becomes_invalid_context(identity_client: TestClient) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    hank_id = _create_user(identity_client, admin_token, "hank", "hank-pass")
    admin_role_id = next(
        item["id"]
        for item in identity_client.get("/api/identity/roles", headers=_auth_header(admin_token)).json()
        if item["name"] == "admin"
    )
    identity_client.post(f"/api/identity/users/{hank_id}/roles/{admin_role_id}", headers=_auth_header(admin_token))
    hank_token = _login(identity_client, tenant_id, "hank", "hank-pass")
    assert identity_client.get("/api/identity/users", headers=_auth_header(hank_token)).status_code == 200

    disabled = identity_client.patch(
        f"/api/identity/users/{hank_id}",
        json={"is_active": False},
        headers=_auth_header(admin_token),
    )
    assert disabled.status_code == 200

    response = identity_client.get("/api/identity/users", headers=_auth_header(hank_token))
    assert response.status_code == 403
    assert response.json()["authorization"]["reason"] == "invalid_context"


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def incr(self, key: str) -> int:
        value = int(self._store.get(key, "0")) + 1
        self._store[key] = str(value)
        return value


@pytest.fixture()
def cached_redis(
    identity_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[FakeRedis, None, None]:
    fake = FakeRedis()
    monkeypatch.setattr(cache_module, "AUTHZ_GRANT_CACHE", "redis")
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake)
    default_interceptor.reset()
    yield fake
    default_interceptor.reset()


def test_grant_cache_is_invalidated_by_admin_mutations(
    identity_client: TestClient,
    cached_redis: FakeRedis,
) -> None:
    tenant_id = _create_tenant(identity_client, "tenant-a")
    _bootstrap_admin(identity_client, tenant_id, "admin", "admin-pass")
    admin_token = _login(identity_client, tenant_id, "admin", "admin-pass")
    gina_id = _create_user(identity_client, admin_token, "gina", "gina-pass")
    gina_token = _login(identity_client, tenant_id, "gina", "gina-pass")

    denied = identity_client.get("/api/identity/roles", headers=_auth_header(gina_token))
    assert denied.status_code == 403
    generation = int(cached_redis.get(GENERATION_KEY) or "0")
    assert cached_redis.get(f"authz:grants:{generation}:{tenant_id}:{gina_id}") is not None

    admin_role_id = next(
        item["id"]
        for item in identity_client.get("/api/identity/roles", headers=_auth_header(admin_token)).json()
        if item["name"] == "admin"
    )
    bound = identity_client.post(
        f"/api/identity/users/{gina_id}/roles/{admin_role_id}",
        headers=_auth_header(admin_token),
    )
    assert bound.status_code == 204
    assert int(cached_redis.get(GENERATION_KEY) or "0") == generation + 1

    allowed = identity_client.get("/api/identity/roles", headers=_auth_header(gina_token))
    assert allowed.status_code == 200

    created = identity_client.post(
        "/api/identity/policies",
        json={"name": "Unused"},
        headers=_auth_header(admin_token),
    )
    assert created.status_code == 201
    assert int(cached_redis.get(GENERATION_KEY) or "0") == generation + 2

    unbound = identity_client.delete(
        f"/api/identity/users/{gina_id}/roles/{admin_role_id}",
        headers=_auth_header(admin_token),
    )
    assert unbound.status_code == 204
    revoked = identity_client.get("/api/identity/roles", headers=_auth_header(gina_token))
    assert revoked.status_code == 403
