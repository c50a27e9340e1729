"""
Redis cache for entitlement payloads.

Public pages read GET /api/tenants/<slug>/features on every load; the payload
only changes when a plan, an override or a parent link changes, and those
writes invalidate the whole subtree. Degrades to a no-op when Redis is
unreachable or disabled.
"""

import logging
import json
from typing import Any, Iterable, Optional

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

# Payloads cached per tenant
PAYLOAD_NAMES = ('features',)


class EntitlementCache:
    """
    Tenant-isolated entitlement payloads.

    Keys pattern: {prefix}:tenant:{tenant_id}:entitlements:{name}
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled: bool = False
        self._prefix: str = ""

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Connect to REDIS_URL unless CACHE_ENABLED is off."""
        self._enabled = app.config.get('CACHE_ENABLED', True)
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'voxpop')
        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')

        if not self._enabled:
            logger.info("[CACHE] Entitlement cache disabled via config")
            return

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[CACHE] Redis connection failed: {e}. Entitlements served uncached.")
            self._enabled = False
            self.client = None

    def is_available(self) -> bool:
        return self._enabled and self.client is not None

    def key_for(self, tenant_id: int, name: str = 'features') -> str:
        return f"{self._prefix}:tenant:{tenant_id}:entitlements:{name}"

    def get_payload(self, tenant_id: int, name: str = 'features') -> Optional[Any]:
        """Cached payload, None on miss or error."""
        if not self.is_available():
            return None
        try:
            value = self.client.get(self.key_for(tenant_id, name))
            return json.loads(value) if value is not None else None
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read error for tenant {tenant_id}: {e}")
            return None

    def set_payload(self, tenant_id: int, payload: Any, name: str = 'features', ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        if ttl is None:
            ttl = current_app.config.get('CACHE_ENTITLEMENTS_TTL', 60)
        try:
            self.client.setex(self.key_for(tenant_id, name), ttl, json.dumps(payload))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write error for tenant {tenant_id}: {e}")
            return False

    def invalidate(self, tenant_ids: Iterable[int]) -> int:
        """Drop every cached payload of the given tenants; returns the keys removed."""
        if not self.is_available():
            return 0
        keys = [self.key_for(tenant_id, name) for tenant_id in tenant_ids for name in PAYLOAD_NAMES]
        if not keys:
            return 0
        try:
            deleted = self.client.delete(*keys)
            if deleted:
                logger.info(f"[CACHE] Invalidated {deleted} entitlement payload(s)")
            return deleted
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate error: {e}")
            return 0


_cache: Optional[EntitlementCache] = None


def init_cache(app: Flask) -> None:
    global _cache
    _cache = EntitlementCache(app)
    app.extensions['entitlement_cache'] = _cache


def get_cache() -> EntitlementCache:
    """Cache singleton; before init_cache() a disabled cache."""
    if _cache is None:
        return EntitlementCache()
    return _cache
