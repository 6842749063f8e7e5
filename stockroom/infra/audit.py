from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from stockroom.domain.models import AuditLog, now_utc
from stockroom.infra.db import get_engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
DENIED_STATUS_CODES = {401, 403}
UNAUDITED_PATHS = {"/healthz", "/readyz"}

logger = logging.getLogger(__name__)


@dataclass
class AuditContext:
    """Per-request overrides collected by routes and the denial handler."""

    action: str | None = None
    resource: str | None = None
    authorization: dict[str, Any] | None = None


def audit_context(request: Request) -> AuditContext:
    context = getattr(request.state, "audit", None)
    if not isinstance(context, AuditContext):
        context = AuditContext()
        request.state.audit = context
    return context


def set_audit_context(request: Request, *, action: str | None = None, resource: str | None = None) -> None:
    context = audit_context(request)
    if action is not None:
        context.action = action
    if resource is not None:
        context.resource = resource


def record_authorization_denial(request: Request, decision: dict[str, Any], operation_id: str | None) -> None:
    audit_context(request).authorization = {**decision, "operation": operation_id}


def should_audit_request(method: str, status_code: int) -> bool:
    # Writes are always recorded; reads only when authorization turned them away.
    return method in WRITE_METHODS or status_code in DENIED_STATUS_CODES


def outcome_for(status_code: int) -> str:
    if status_code in DENIED_STATUS_CODES:
        return "denied"
    if status_code >= 500:
        return "error"
    return "rejected" if status_code >= 400 else "success"


def build_audit_entry(request: Request, status_code: int) -> AuditLog:
    context = audit_context(request)
    claims = getattr(request.state, "claims", {})
    tenant_id = claims.get("tenant_id", "system")
    actor_id = claims.get("sub")
    path = request.url.path
    route = request.scope.get("route")

    result: dict[str, Any] = {"status_code": status_code, "outcome": outcome_for(status_code)}
    detail: dict[str, Any] = {
        "who": {"tenant_id": tenant_id, "actor_id": actor_id},
        "when": {"request_ts": now_utc().isoformat()},
        "where": {
            "path": path,
            "route": getattr(route, "path", path),
            "client_ip": request.client.host if request.client is not None else None,
        },
        "result": result,
    }
    if context.authorization is not None:
        detail["authorization"] = context.authorization
        result["reason"] = context.authorization.get("reason")

    return AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=context.action or f"{request.method}:{path}",
        resource=context.resource or path,
        method=request.method,
        status_code=status_code,
        detail=detail,
    )


def write_audit_log(entry: AuditLog) -> None:
    with Session(get_engine()) as session:
        session.add(entry)
        session.commit()


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.url.path in UNAUDITED_PATHS or not should_audit_request(request.method, response.status_code):
            return response

        entry = build_audit_entry(request, response.status_code)
        try:
            write_audit_log(entry)
        except SQLAlchemyError:
            # A failed audit write never changes the response.
            logger.exception("audit log write failed", extra={"tenant_id": entry.tenant_id, "user_id": entry.actor_id})
        return response
