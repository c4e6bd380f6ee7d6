"""Time-boxed response cache with sliding expiration and group invalidation.

Two stores share one contract:

- ``CacheStore`` keeps entries in process memory. Reads and writes never
  suspend; the coroutine methods exist so callers do not care which backend
  they hold.
- ``RedisCacheStore`` keeps entries in Redis so several processes share one
  cache. Values must be JSON serializable.

Keys are built with ``build_cache_key`` from the endpoint path plus a
canonical encoding of the query parameters, so a write to one resource can
drop every cached query shape of that resource with
``invalidate_group(endpoint)``.

Consistency is deliberately weak: related keys are invalidated one at a
time, so a concurrent reader can observe a mix of fresh and stale entries
until each one is invalidated or expires.
"""

import copy
import json
import math
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from redis.asyncio import Redis
from redis.exceptions import RedisError

from freeagent_client.core.config import Settings, settings
from freeagent_client.core.logging import get_logger

logger = get_logger(__name__)

KeyMatcher = Union[str, Callable[[str], bool]]


# =============================================================================
# TTL policies
# =============================================================================


class VolatilityClass(str, Enum):
    """How quickly a resource family changes."""

    REFERENCE_DATA = "reference_data"  # tax rates, CIS bands, asset types
    BUSINESS_ENTITY = "business_entity"  # invoices, projects, bills, ...
    REPORT_DATA = "report_data"


@dataclass(frozen=True)
class TTLPolicy:
    """Expiry policy for a cache entry.

    Attributes:
        ttl: Lifetime in seconds
        sliding: Whether each successful read restarts the lifetime
    """

    ttl: float
    sliding: bool = False


def default_policies(config: Optional[Settings] = None) -> Dict[VolatilityClass, TTLPolicy]:
    """TTL policy per volatility class, taken from settings."""
    config = config or settings
    return {
        VolatilityClass.REFERENCE_DATA: TTLPolicy(ttl=config.reference_cache_ttl, sliding=False),
        VolatilityClass.BUSINESS_ENTITY: TTLPolicy(ttl=config.business_cache_ttl, sliding=True),
        VolatilityClass.REPORT_DATA: TTLPolicy(ttl=config.report_cache_ttl, sliding=False),
    }


# =============================================================================
# Cache keys
# =============================================================================


def _encode_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def build_cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Generate a cache key for an endpoint and parameters.

    Parameters are sorted by name and URL-encoded, so semantically identical
    queries map to the same key regardless of argument order. ``None``
    values are dropped.

    Args:
        endpoint: API endpoint path (e.g. "bills")
        params: Optional query parameters

    Returns:
        Cache key string, e.g. "bills?view=open"
    """
    path = endpoint.strip("/")
    if not params:
        return path

    pairs = sorted(
        (name, _encode_param(value)) for name, value in params.items() if value is not None
    )
    if not pairs:
        return path
    return f"{path}?{urlencode(pairs)}"


def _matcher(prefix_or_predicate: KeyMatcher) -> Callable[[str], bool]:
    if callable(prefix_or_predicate):
        return prefix_or_predicate
    prefix = prefix_or_predicate.strip("/")
    # "bills" owns "bills", "bills/42" and "bills?view=open", not "bills_summary"
    return lambda key: key == prefix or key.startswith((f"{prefix}/", f"{prefix}?"))


# =============================================================================
# In-memory store
# =============================================================================


@dataclass
class CacheEntry:
    """Stored value with its expiry. Owned exclusively by the store."""

    key: str
    value: Any
    expires_at: float
    policy: TTLPolicy


class CacheStore:
    """Process-local keyed cache with sliding or fixed expiry.

    The key table is guarded by a lock so concurrent requests (or threads)
    cannot corrupt it. Values are deep-copied on the way in and out, so no
    caller ever holds a live reference to a stored value.

    Example:
        ```python
        store = CacheStore()
        await store.set("bills?view=open", bills, TTLPolicy(ttl=300, sliding=True))
        value, found = await store.get("bills?view=open")
        await store.invalidate_group("bills")
        ```
    """

    def __init__(
        self,
        default_policy: Optional[TTLPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize CacheStore.

        Args:
            default_policy: Policy used when ``set`` is called without one.
                Defaults to the business entity policy from settings.
            clock: Monotonic clock in seconds. Tests inject a fake clock.
        """
        self.default_policy = default_policy or default_policies()[VolatilityClass.BUSINESS_ENTITY]
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.expires_at(key) is not None

    def expires_at(self, key: str) -> Optional[float]:
        """Expiry timestamp of a live entry, without counting as a read."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._clock() >= entry.expires_at:
                return None
            return entry.expires_at

    async def get(self, key: str) -> Tuple[Any, bool]:
        """Look up a key.

        A hit on a sliding entry pushes its expiry to ``now + ttl``.

        Returns:
            ``(value, True)`` on hit, ``(None, False)`` on miss or expiry
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False

            now = self._clock()
            if now >= entry.expires_at:
                del self._entries[key]
                return None, False

            if entry.policy.sliding:
                entry.expires_at = max(entry.expires_at, now + entry.policy.ttl)

            return copy.deepcopy(entry.value), True

    async def set(self, key: str, value: Any, policy: Optional[TTLPolicy] = None) -> None:
        """Store a value, overwriting any entry and restarting its timer."""
        policy = policy or self.default_policy
        stored = copy.deepcopy(value)
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                value=stored,
                expires_at=self._clock() + policy.ttl,
                policy=policy,
            )

    async def invalidate(self, key: str) -> None:
        """Remove one key. Absent keys are ignored."""
        with self._lock:
            self._entries.pop(key, None)

    async def invalidate_group(self, prefix_or_predicate: KeyMatcher) -> int:
        """Remove every key under a path prefix, or every key a predicate accepts.

        Returns:
            Number of entries removed
        """
        matches = _matcher(prefix_or_predicate)
        with self._lock:
            doomed = [key for key in self._entries if matches(key)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries")
        return len(doomed)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# =============================================================================
# Redis store
# =============================================================================


def _escape_glob(text: str) -> str:
    return "".join(f"\\{ch}" if ch in "*?[]\\" else ch for ch in text)


class RedisCacheStore:
    """Redis-backed cache sharing the ``CacheStore`` contract.

    Each entry is stored as JSON together with its policy so a sliding read
    can renew the key's TTL with ``EXPIRE``. Redis failures are logged and
    treated as cache misses; the cache never fails a request.
    """

    def __init__(
        self,
        redis: Redis,
        prefix: Optional[str] = None,
        default_policy: Optional[TTLPolicy] = None,
    ):
        """Initialize RedisCacheStore.

        Args:
            redis: ``redis.asyncio`` client
            prefix: Namespace prepended to every key
            default_policy: Policy used when ``set`` is called without one
        """
        self.redis = redis
        self.prefix = prefix if prefix is not None else settings.cache_key_prefix
        self.default_policy = default_policy or default_policies()[VolatilityClass.BUSINESS_ENTITY]

    def _redis_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Tuple[Any, bool]:
        redis_key = self._redis_key(key)
        try:
            raw = await self.redis.get(redis_key)
            if raw is None:
                return None, False
            payload = json.loads(raw)
            if payload.get("sliding"):
                await self.redis.expire(redis_key, math.ceil(payload["ttl"]))
            return payload["value"], True
        except (RedisError, ValueError, KeyError) as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None, False

    async def set(self, key: str, value: Any, policy: Optional[TTLPolicy] = None) -> None:
        policy = policy or self.default_policy
        try:
            payload = json.dumps({"value": value, "ttl": policy.ttl, "sliding": policy.sliding})
            await self.redis.setex(self._redis_key(key), math.ceil(policy.ttl), payload)
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    async def invalidate(self, key: str) -> None:
        try:
            await self.redis.delete(self._redis_key(key))
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for {key}: {e}")

    async def invalidate_group(self, prefix_or_predicate: KeyMatcher) -> int:
        if callable(prefix_or_predicate):
            pattern = f"{_escape_glob(self.prefix)}*"
        else:
            pattern = f"{_escape_glob(self._redis_key(prefix_or_predicate.strip('/')))}*"
        matches = _matcher(prefix_or_predicate)

        try:
            keys = []
            async for redis_key in self.redis.scan_iter(match=pattern):
                if isinstance(redis_key, bytes):
                    redis_key = redis_key.decode()
                if matches(redis_key[len(self.prefix):]):
                    keys.append(redis_key)
            if keys:
                await self.redis.delete(*keys)
            return len(keys)
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for {prefix_or_predicate}: {e}")
            return 0

    async def close(self) -> None:
        await self.redis.aclose()


# =============================================================================
# Factory
# =============================================================================

_process_store: Optional[CacheStore] = None
_process_store_lock = threading.Lock()


def get_process_cache() -> CacheStore:
    """Process-wide in-memory store shared by clients that do not bring one."""
    global _process_store
    with _process_store_lock:
        if _process_store is None:
            _process_store = CacheStore()
        return _process_store


def create_cache_store(config: Optional[Settings] = None) -> Optional[Union[CacheStore, RedisCacheStore]]:
    """Build the cache store selected by ``cache_backend``.

    Returns:
        The shared memory store, a Redis store, or None when caching is off
    """
    config = config or settings
    if config.cache_backend == "none":
        return None
    if config.cache_backend == "redis":
        return RedisCacheStore(
            Redis.from_url(config.redis_url),
            prefix=config.cache_key_prefix,
            default_policy=default_policies(config)[VolatilityClass.BUSINESS_ENTITY],
        )
    return get_process_cache()
