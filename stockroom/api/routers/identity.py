from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from stockroom.api.deps import claims_tenant_id, claims_user_id, get_current_claims
from stockroom.domain.models import (
    BootstrapAdminRequest,
    DevLoginRequest,
    MembershipCreate,
    MembershipRead,
    PermissionCreate,
    PermissionRead,
    PermissionUpdate,
    PolicyCreate,
    PolicyRead,
    PolicyUpdate,
    RoleCreate,
    RoleRead,
    RoleUpdate,
    TenantCreate,
    TenantRead,
    TenantUpdate,
    TokenResponse,
    UserCreate,
    UserRead,
    UserUpdate,
)
from stockroom.infra.audit import set_audit_context
from stockroom.infra.auth import create_access_token
from stockroom.services.identity_service import AuthError, ConflictError, IdentityService, NotFoundError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


def _ensure_own_tenant(claims: dict[str, Any], tenant_id: str) -> None:
    # Authenticated callers only see their own tenant; anonymous calls fall
    # through so the guarded service reports them as unauthenticated.
    if claims and claims_tenant_id(claims) != tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tenant not found")


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, service: Service) -> TenantRead:
    try:
        tenant = service.create_tenant(payload)
        return TenantRead.model_validate(tenant)
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.get("/tenants", response_model=list[TenantRead])
def list_tenants(claims: Claims, service: Service) -> list[TenantRead]:
    tenants = service.list_tenants(claims_user_id(claims))
    return [TenantRead.model_validate(item) for item in tenants]


@router.get("/tenants/{tenant_id}", response_model=TenantRead)
def get_tenant(tenant_id: str, claims: Claims, service: Service) -> TenantRead:
    _ensure_own_tenant(claims, tenant_id)
    try:
        tenant = service.get_tenant(tenant_id)
        return TenantRead.model_validate(tenant)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/tenants/{tenant_id}", response_model=TenantRead)
def update_tenant(tenant_id: str, payload: TenantUpdate, claims: Claims, service: Service) -> TenantRead:
    _ensure_own_tenant(claims, tenant_id)
    try:
        tenant = service.update_tenant(tenant_id, payload)
        return TenantRead.model_validate(tenant)
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/tenants/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(tenant_id: str, claims: Claims, service: Service) -> Response:
    _ensure_own_tenant(claims, tenant_id)
    try:
        service.delete_tenant(tenant_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, request: Request, service: Service) -> UserRead:
    set_audit_context(request, action="identity.bootstrap_admin", resource=f"tenant:{payload.tenant_id}")
    try:
        user = service.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user, grants = service.dev_login(payload.tenant_id, payload.username, payload.password)
    except AuthError as exc:
        _handle_identity_error(exc)
        raise
    token = create_access_token(user_id=user.id, tenant_id=payload.tenant_id)
    return TokenResponse(
        access_token=token,
        permissions=sorted(grants.permissions),
        roles=sorted(grants.roles),
    )


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, claims: Claims, service: Service) -> UserRead:
    try:
        user = service.create_user(claims_tenant_id(claims), payload)
        return UserRead.model_validate(user)
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.get("/users", response_model=list[UserRead])
def list_users(claims: Claims, service: Service) -> list[UserRead]:
    users = service.list_users(claims_tenant_id(claims))
    return [UserRead.model_validate(item) for item in users]


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: str, claims: Claims, service: Service) -> UserRead:
    try:
        user = service.get_user(claims_tenant_id(claims), user_id)
        return UserRead.model_validate(user)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/users/{user_id}", response_model=UserRead)
def update_user(user_id: str, payload: UserUpdate, claims: Claims, service: Service) -> UserRead:
    try:
        user = service.update_user(claims_tenant_id(claims), user_id, payload)
        return UserRead.model_validate(user)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/memberships", response_model=list[MembershipRead])
def list_members(claims: Claims, service: Service) -> list[MembershipRead]:
    members = service.list_members(claims_tenant_id(claims))
    return [MembershipRead.model_validate(item) for item in members]


@router.post("/memberships", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
def add_member(payload: MembershipCreate, claims: Claims, service: Service) -> MembershipRead:
    try:
        membership = service.add_member(claims_tenant_id(claims), payload)
        return MembershipRead.model_validate(membership)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/memberships/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(user_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.remove_member(claims_tenant_id(claims), user_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/roles", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(payload: RoleCreate, claims: Claims, service: Service) -> RoleRead:
    try:
        role = service.create_role(claims_tenant_id(claims), payload)
        return RoleRead.model_validate(role)
    except ConflictError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/roles", response_model=list[RoleRead])
def list_roles(claims: Claims, service: Service) -> list[RoleRead]:
    roles = service.list_roles(claims_tenant_id(claims))
    return [RoleRead.model_validate(item) for item in roles]


@router.get("/roles/{role_id}", response_model=RoleRead)
def get_role(role_id: str, claims: Claims, service: Service) -> RoleRead:
    try:
        role = service.get_role(claims_tenant_id(claims), role_id)
        return RoleRead.model_validate(role)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/roles/{role_id}", response_model=RoleRead)
def update_role(role_id: str, payload: RoleUpdate, claims: Claims, service: Service) -> RoleRead:
    try:
        role = service.update_role(claims_tenant_id(claims), role_id, payload)
        return RoleRead.model_validate(role)
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(role_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_role(claims_tenant_id(claims), role_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/roles/{role_id}/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
def bind_role_policy(role_id: str, policy_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.bind_role_policy(claims_tenant_id(claims), role_id, policy_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/roles/{role_id}/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
def unbind_role_policy(role_id: str, policy_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.unbind_role_policy(claims_tenant_id(claims), role_id, policy_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/policies", response_model=PolicyRead, status_code=status.HTTP_201_CREATED)
def create_policy(payload: PolicyCreate, claims: Claims, service: Service) -> PolicyRead:
    try:
        policy = service.create_policy(claims_tenant_id(claims), payload)
        return PolicyRead.model_validate(policy)
    except ConflictError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/policies", response_model=list[PolicyRead])
def list_policies(claims: Claims, service: Service) -> list[PolicyRead]:
    policies = service.list_policies(claims_tenant_id(claims))
    return [PolicyRead.model_validate(item) for item in policies]


@router.get("/policies/{policy_id}", response_model=PolicyRead)
def get_policy(policy_id: str, claims: Claims, service: Service) -> PolicyRead:
    try:
        policy = service.get_policy(claims_tenant_id(claims), policy_id)
        return PolicyRead.model_validate(policy)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/policies/{policy_id}", response_model=PolicyRead)
def update_policy(policy_id: str, payload: PolicyUpdate, claims: Claims, service: Service) -> PolicyRead:
    try:
        policy = service.update_policy(claims_tenant_id(claims), policy_id, payload)
        return PolicyRead.model_validate(policy)
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_policy(policy_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_policy(claims_tenant_id(claims), policy_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/policies/{policy_id}/permissions", response_model=list[PermissionRead])
def list_policy_permissions(policy_id: str, claims: Claims, service: Service) -> list[PermissionRead]:
    try:
        permissions = service.list_policy_permissions(claims_tenant_id(claims), policy_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise
    return [PermissionRead.model_validate(item) for item in permissions]


@router.post("/policies/{policy_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
def bind_policy_permission(policy_id: str, permission_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.bind_policy_permission(claims_tenant_id(claims), policy_id, permission_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/policies/{policy_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
def unbind_policy_permission(policy_id: str, permission_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.unbind_policy_permission(claims_tenant_id(claims), policy_id, permission_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/permissions", response_model=PermissionRead, status_code=status.HTTP_201_CREATED)
def create_permission(payload: PermissionCreate, claims: Claims, service: Service) -> PermissionRead:
    try:
        permission = service.create_permission(payload)
        return PermissionRead.model_validate(permission)
    except ConflictError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(claims: Claims, service: Service) -> list[PermissionRead]:
    return [PermissionRead.model_validate(item) for item in service.list_permissions()]


@router.get("/permissions/{permission_id}", response_model=PermissionRead)
def get_permission(permission_id: str, claims: Claims, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.get_permission(permission_id))
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.patch("/permissions/{permission_id}", response_model=PermissionRead)
def update_permission(
    permission_id: str,
    payload: PermissionUpdate,
    claims: Claims,
    service: Service,
) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.update_permission(permission_id, payload))
    except (NotFoundError, ConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.delete("/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_permission(permission_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.delete_permission(permission_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/users/{user_id}/roles", response_model=list[RoleRead])
def list_user_roles(user_id: str, claims: Claims, service: Service) -> list[RoleRead]:
    try:
        roles = service.list_user_roles(claims_tenant_id(claims), user_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise
    return [RoleRead.model_validate(item) for item in roles]


@router.post("/users/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def bind_user_role(user_id: str, role_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.bind_user_role(claims_tenant_id(claims), user_id, role_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/users/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def unbind_user_role(user_id: str, role_id: str, claims: Claims, service: Service) -> Response:
    try:
        service.unbind_user_role(claims_tenant_id(claims), user_id, role_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
