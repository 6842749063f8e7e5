"""
Permission declarations and the operation -> requirements table.

Declaring a requirement on a function records it in ``registry`` under the
function's operation id and wraps the function once with the authorization
guard. Stacked declarations accumulate; every one of them must pass.
"""

from __future__ import annotations

import functools
import inspect
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from stockroom.domain.permissions import normalize_permission_code

F = TypeVar("F", bound=Callable[..., Any])

GUARD_MARKER = "__authz_operation__"


@dataclass(frozen=True)
class PermissionRequirement:
    permissions: tuple[str, ...] = ()
    required_roles: tuple[str, ...] = ()
    require_all: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.permissions and not self.required_roles

    def as_dict(self) -> dict[str, Any]:
        return {
            "permissions": list(self.permissions),
            "required_roles": list(self.required_roles),
            "require_all": self.require_all,
        }


def operation_id_for(func: Callable[..., Any]) -> str:
    return f"{func.__module__}:{func.__qualname__}"


class PermissionRegistry:
    def __init__(self) -> None:
        self._requirements: dict[str, list[PermissionRequirement]] = {}
        self._lock = threading.Lock()

    def register(self, operation_id: str, requirement: PermissionRequirement) -> None:
        with self._lock:
            self._requirements.setdefault(operation_id, []).append(requirement)

    def requirements_for(self, operation_id: str) -> tuple[PermissionRequirement, ...]:
        return tuple(self._requirements.get(operation_id, ()))

    def operations(self) -> dict[str, tuple[PermissionRequirement, ...]]:
        with self._lock:
            return {key: tuple(value) for key, value in sorted(self._requirements.items())}


registry = PermissionRegistry()


def _clean(values: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    cleaned: list[str] = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            continue
        if value not in cleaned:
            cleaned.append(value)
    return tuple(cleaned)


def _guard(func: Callable[..., Any], operation_id: str) -> Callable[..., Any]:
    # Imported here: the interceptor module depends on this one.
    from stockroom.authz.lazy import interceptor_for

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            interceptor = interceptor_for(args)
            return await interceptor.intercept_async(operation_id, func, args, kwargs)

        setattr(async_wrapper, GUARD_MARKER, operation_id)
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        interceptor = interceptor_for(args)
        return interceptor.intercept(operation_id, func, args, kwargs)

    setattr(wrapper, GUARD_MARKER, operation_id)
    return wrapper


def requires_permission(
    *permissions: str,
    roles: tuple[str, ...] | list[str] = (),
    require_all: bool = False,
) -> Callable[[F], F]:
    requirement = PermissionRequirement(
        permissions=_clean([normalize_permission_code(item) for item in _clean(permissions)]),
        required_roles=_clean(tuple(roles)),
        require_all=require_all,
    )

    def decorator(func: F) -> F:
        operation_id = getattr(func, GUARD_MARKER, None)
        if operation_id is not None:
            # Already guarded by an inner declaration; just add the requirement.
            registry.register(operation_id, requirement)
            return func
        operation_id = operation_id_for(func)
        registry.register(operation_id, requirement)
        return _guard(func, operation_id)  # type: ignore[return-value]

    return decorator


def requires_role(*roles: str) -> Callable[[F], F]:
    return requires_permission(roles=roles)
