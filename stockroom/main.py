from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from stockroom.api.routers import authz, identity, inventory
from stockroom.authz.decision import AuthorizationDecision, AuthorizationDenied, DeniedReason
from stockroom.authz.resolver import InvalidContextError, ResolutionCancelledError, ResolutionError
from stockroom.infra.audit import AuditMiddleware, record_authorization_denial
from stockroom.infra.db import check_db_ready
from stockroom.infra.logging import setup_logging
from stockroom.infra.redis_state import check_redis_ready

setup_logging()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="stockroom",
    description="Multi-tenant inventory service with declarative permission checks.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
app.include_router(authz.router, prefix="/api/authz", tags=["authz"])


def _denied_response(request: Request, decision: AuthorizationDecision, operation_id: str | None) -> JSONResponse:
    detail = decision.as_dict()
    record_authorization_denial(request, detail, operation_id)
    headers = {"WWW-Authenticate": "Bearer"} if decision.reason == DeniedReason.UNAUTHENTICATED else None
    return JSONResponse(
        status_code=decision.status_code,
        content={"detail": decision.message, "authorization": detail},
        headers=headers,
    )


@app.exception_handler(AuthorizationDenied)
async def authorization_denied_handler(request: Request, exc: AuthorizationDenied) -> JSONResponse:
    return _denied_response(request, exc.decision, exc.operation_id)


@app.exception_handler(ResolutionError)
async def resolution_error_handler(request: Request, exc: ResolutionError) -> JSONResponse:
    if isinstance(exc, (InvalidContextError, ResolutionCancelledError)):
        return _denied_response(request, AuthorizationDecision.deny(DeniedReason.INVALID_CONTEXT), None)
    logger.error("grant resolution failed: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "authorization backend unavailable"},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
