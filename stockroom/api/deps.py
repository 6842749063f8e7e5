from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from stockroom.infra.auth import TokenError, decode_access_token
from stockroom.infra.tenant import set_request_context

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/dev-login", auto_error=False)


async def get_current_claims(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> dict[str, Any]:
    # Async so the tenant context is set on the request task and copied into
    # the worker thread that runs a sync endpoint.
    if token is None:
        set_request_context(None, None)
        return {}
    try:
        claims = decode_access_token(token)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    request.state.claims = claims
    set_request_context(claims["tenant_id"], claims["sub"])
    return claims


def claims_tenant_id(claims: dict[str, Any]) -> str:
    return str(claims.get("tenant_id", ""))


def claims_user_id(claims: dict[str, Any]) -> str:
    return str(claims.get("sub", ""))
