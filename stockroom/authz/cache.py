from __future__ import annotations

import json
import logging
import os
from typing import Protocol

from redis import Redis
from redis.exceptions import RedisError

from stockroom.authz.resolver import EffectiveGrantSet
from stockroom.infra import redis_state

AUTHZ_GRANT_CACHE = os.getenv("AUTHZ_GRANT_CACHE", "off")
AUTHZ_GRANT_CACHE_TTL_SECONDS = int(os.getenv("AUTHZ_GRANT_CACHE_TTL_SECONDS", "300"))

GENERATION_KEY = "authz:grants:generation"

logger = logging.getLogger(__name__)


class GrantCache(Protocol):
    def generation(self) -> str: ...

    def get(self, generation: str, tenant_id: str, user_id: str) -> EffectiveGrantSet | None: ...

    def set(self, generation: str, tenant_id: str, user_id: str, grants: EffectiveGrantSet) -> None: ...

    def invalidate_all(self) -> None: ...


class RedisGrantCache:
    """Grant sets keyed by a generation counter.

    ``invalidate_all`` bumps the counter, so entries written under an older
    generation are never read again and simply expire.
    """

    def __init__(self, redis: Redis | None = None, ttl_seconds: int = AUTHZ_GRANT_CACHE_TTL_SECONDS) -> None:
        self._redis = redis
        self.ttl_seconds = ttl_seconds

    def _client(self) -> Redis:
        return self._redis if self._redis is not None else redis_state.get_redis()

    def generation(self) -> str:
        try:
            return str(self._client().get(GENERATION_KEY) or "0")
        except RedisError:
            logger.warning("grant cache generation read failed", exc_info=True)
            return ""

    def _key(self, generation: str, tenant_id: str, user_id: str) -> str:
        return f"authz:grants:{generation}:{tenant_id}:{user_id}"

    def get(self, generation: str, tenant_id: str, user_id: str) -> EffectiveGrantSet | None:
        if not generation:
            return None
        try:
            raw = self._client().get(self._key(generation, tenant_id, user_id))
        except RedisError:
            logger.warning("grant cache read failed", exc_info=True, extra={"tenant_id": tenant_id})
            return None
        if raw is None:
            return None
        payload = json.loads(raw)
        return EffectiveGrantSet.of(
            permissions=payload.get("permissions", []),
            roles=payload.get("roles", []),
        )

    def set(self, generation: str, tenant_id: str, user_id: str, grants: EffectiveGrantSet) -> None:
        if not generation:
            return
        payload = json.dumps(
            {
                "permissions": sorted(grants.permissions),
                "roles": sorted(grants.roles),
            }
        )
        try:
            self._client().set(self._key(generation, tenant_id, user_id), payload, ex=self.ttl_seconds)
        except RedisError:
            logger.warning("grant cache write failed", exc_info=True, extra={"tenant_id": tenant_id})

    def invalidate_all(self) -> None:
        try:
            self._client().incr(GENERATION_KEY)
        except RedisError:
            logger.error("grant cache invalidation failed", exc_info=True)
            raise


def build_grant_cache() -> GrantCache | None:
    if AUTHZ_GRANT_CACHE == "redis":
        return RedisGrantCache()
    return None
