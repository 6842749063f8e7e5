from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from stockroom.authz.cache import build_grant_cache
from stockroom.authz.decision import AuthorizationDecision
from stockroom.authz.interceptor import AuthorizationInterceptor
from stockroom.authz.resolver import PermissionResolver, SqlGrantStore
from stockroom.infra.tenant import TenantContext

INTERCEPTOR_ATTRIBUTE = "authorization_interceptor"


class Interceptor(Protocol):
    def authorize(self, operation_id: str, context: TenantContext | None) -> AuthorizationDecision: ...

    def intercept(
        self,
        operation_id: str,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any: ...

    async def intercept_async(
        self,
        operation_id: str,
        func: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any: ...


class LazyInterceptor:
    """Builds the real interceptor on first guarded call, exactly once."""

    def __init__(self, factory: Callable[[], AuthorizationInterceptor]) -> None:
        self._factory = factory
        self._interceptor: AuthorizationInterceptor | None = None
        self._lock = threading.Lock()

    @property
    def constructed(self) -> bool:
        return self._interceptor is not None

    def get(self) -> AuthorizationInterceptor:
        interceptor = self._interceptor
        if interceptor is not None:
            return interceptor
        with self._lock:
            if self._interceptor is None:
                self._interceptor = self._factory()
            return self._interceptor

    def reset(self) -> None:
        with self._lock:
            self._interceptor = None

    def authorize(self, operation_id: str, context: TenantContext | None) -> AuthorizationDecision:
        return self.get().authorize(operation_id, context)

    def intercept(
        self,
        operation_id: str,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        return self.get().intercept(operation_id, func, args, kwargs)

    async def intercept_async(
        self,
        operation_id: str,
        func: Callable[..., Awaitable[Any]],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        return await self.get().intercept_async(operation_id, func, args, kwargs)


def build_default_interceptor() -> AuthorizationInterceptor:
    resolver = PermissionResolver(SqlGrantStore(), cache=build_grant_cache())
    return AuthorizationInterceptor(resolver)


default_interceptor = LazyInterceptor(build_default_interceptor)


def interceptor_for(args: tuple[Any, ...]) -> Interceptor:
    # Services may carry their own interceptor; everything else shares the default.
    if args:
        bound = getattr(args[0], INTERCEPTOR_ATTRIBUTE, None)
        if bound is not None:
            return bound
    return default_interceptor
