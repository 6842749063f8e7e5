from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from stockroom.api.deps import claims_tenant_id, claims_user_id, get_current_claims
from stockroom.authz.decision import AuthorizationDecision, AuthorizationDenied, DeniedReason
from stockroom.domain.models import EffectiveGrantsRead, GuardedOperationRead, RequirementRead
from stockroom.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


@router.get("/operations", response_model=list[GuardedOperationRead])
def list_guarded_operations(claims: Claims, service: Service) -> list[GuardedOperationRead]:
    return [
        GuardedOperationRead(
            operation=operation_id,
            requirements=[RequirementRead(**item.as_dict()) for item in requirements],
        )
        for operation_id, requirements in service.guarded_operations().items()
    ]


@router.get("/me/grants", response_model=EffectiveGrantsRead)
def my_grants(claims: Claims, service: Service) -> EffectiveGrantsRead:
    if not claims:
        raise AuthorizationDenied(AuthorizationDecision.deny(DeniedReason.UNAUTHENTICATED), "authz:me/grants")
    return EffectiveGrantsRead(**service.describe_grants(claims_tenant_id(claims), claims_user_id(claims)))
