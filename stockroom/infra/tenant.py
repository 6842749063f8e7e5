from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str | None
    user_id: str | None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.tenant_id) and bool(self.user_id)


tenant_context_ctx: ContextVar[TenantContext | None] = ContextVar("tenant_context", default=None)


def set_request_context(tenant_id: str | None, user_id: str | None) -> TenantContext:
    context = TenantContext(tenant_id=tenant_id, user_id=user_id)
    tenant_context_ctx.set(context)
    return context


@contextmanager
def tenant_scope(tenant_id: str | None, user_id: str | None) -> Iterator[TenantContext]:
    context = TenantContext(tenant_id=tenant_id, user_id=user_id)
    token = tenant_context_ctx.set(context)
    try:
        yield context
    finally:
        tenant_context_ctx.reset(token)


def current_context() -> TenantContext | None:
    return tenant_context_ctx.get()


def current_tenant_id() -> str | None:
    context = tenant_context_ctx.get()
    return context.tenant_id if context is not None else None


def current_user_id() -> str | None:
    context = tenant_context_ctx.get()
    return context.user_id if context is not None else None
