"""Fragment caching: stores, key derivation and invalidation.

Provides:
    * ``FragmentStore`` protocol: the ``get`` / ``set`` / ``delete`` contract a
      backend must satisfy (``get_many`` / ``delete_many`` are optional).
    * In-memory store with optional TTL and a capacity cap.
    * Redis-backed store (JSON values, ``MGET`` batch reads).
    * ``CacheManager``: deterministic keys, get-or-render, invalidation.

Design goals:
    1. Deterministic keys: ``{prefix}{class}:{id}:{version}:{level}``.
    2. Complete invalidation: the key space of one identity is finite, so
       invalidation enumerates and deletes every key it could have produced.
    3. Fail soft on reads: a store read failure is a miss, a store write
       failure is logged and the freshly rendered fragment is still returned.
    4. Observability: hit/miss/store-error counts go to the performance monitor.

Only scalar fields ever reach the store; reference fields are composed at read
time on top of cached fragments, each cached under its own identity.

Quick examples:

Local store::

    from cached_json.cache import InMemoryFragmentStore
    store = InMemoryFragmentStore(default_ttl=5)
    store.set("k", {"name": "Ada"})
    assert store.get("k") == {"name": "Ada"}

Redis store::

    from cached_json.cache import RedisFragmentStore
    import redis
    store = RedisFragmentStore(redis.from_url("redis://localhost:6379/0"))
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

import redis

from .errors import CacheStoreError
from .models import ExposureLevel
from .registry import SchemaRegistry, class_key

if TYPE_CHECKING:  # pragma: no cover - for type checkers only
    from .config import CacheConfig
    from .monitoring import PerformanceMonitor

logger = logging.getLogger(__name__)

Fragment = Dict[str, Any]
RenderFn = Callable[[], Fragment]

# Versions outside a schema's known versions all render the same fragment
OTHER_VERSIONS = "*"


def key_id(instance_id: Any) -> str:
    """Key segment for an instance id.

    Uses ``repr`` so ids that differ only by type (``1`` and ``"1"``) never
    share a key: ``key_id(1) == "1"``, ``key_id("1") == "'1'"``.
    """
    return repr(instance_id)


@runtime_checkable
class FragmentStore(Protocol):
    """Minimal key/value contract required from a cache backend.

    ``get`` returns None on a miss. Implementations guard their own
    concurrency; no atomicity beyond read-your-writes on one key is expected.
    """

    def get(self, key: str) -> Optional[Fragment]: ...

    def set(self, key: str, value: Fragment) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class CacheEntry:
    """Stored fragment with its creation time and TTL."""

    data: Fragment
    timestamp: float = field(default_factory=time.time)
    ttl: Optional[float] = None

    def is_expired(self) -> bool:
        return self.ttl is not None and time.time() - self.timestamp > self.ttl


class InMemoryFragmentStore:
    """Thread-safe in-process fragment store.

    Notes:
        * When ``max_entries`` is exceeded the whole store is reset rather than
          tracking recency per entry.
        * Values are deep-copied on the way in and out so callers cannot
          mutate cached fragments.
    """

    def __init__(self, default_ttl: Optional[float] = None, max_entries: int = 10000):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Fragment]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._cache[key]
                return None
            return copy.deepcopy(entry.data)

    def get_many(self, keys: Sequence[str]) -> Dict[str, Fragment]:
        found: Dict[str, Fragment] = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                found[key] = value
        return found

    def set(self, key: str, value: Fragment, ttl: Optional[float] = None) -> None:
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_entries:
                logger.debug(f"In-memory fragment store reached {self.max_entries} entries; resetting")
                self._cache.clear()
            self._cache[key] = CacheEntry(data=copy.deepcopy(value), ttl=ttl or self.default_ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def delete_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class RedisFragmentStore:
    """Fragment store backed by a Redis (or ``fakeredis``) client.

    Fragments are stored as JSON text. Client failures are raised as
    :class:`CacheStoreError`; deciding whether they are fatal is the cache
    manager's job.
    """

    def __init__(self, client: Any, default_ttl: Optional[float] = None) -> None:
        self._redis = client
        self.default_ttl = default_ttl

    @property
    def client(self) -> Any:
        return self._redis

    def _serialize(self, value: Fragment) -> bytes:
        return json.dumps(value, default=str).encode("utf-8")

    def _deserialize(self, blob: Any) -> Fragment:
        if isinstance(blob, bytes):
            blob = blob.decode("utf-8")
        return json.loads(blob)

    def get(self, key: str) -> Optional[Fragment]:
        try:
            blob = self._redis.get(key)
            return None if blob is None else self._deserialize(blob)
        except (redis.RedisError, ValueError) as exc:
            raise CacheStoreError("get", key, str(exc)) from exc

    def get_many(self, keys: Sequence[str]) -> Dict[str, Fragment]:
        if not keys:
            return {}
        try:
            blobs = self._redis.mget(list(keys))
            return {
                key: self._deserialize(blob)
                for key, blob in zip(keys, blobs)
                if blob is not None
            }
        except (redis.RedisError, ValueError) as exc:
            raise CacheStoreError("get_many", None, str(exc)) from exc

    def set(self, key: str, value: Fragment, ttl: Optional[float] = None) -> None:
        effective_ttl = ttl or self.default_ttl
        try:
            blob = self._serialize(value)
            if effective_ttl:
                self._redis.setex(key, max(int(effective_ttl), 1), blob)
            else:
                self._redis.set(key, blob)
        except (redis.RedisError, TypeError, ValueError) as exc:
            raise CacheStoreError("set", key, str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(key)
        except redis.RedisError as exc:
            raise CacheStoreError("delete", key, str(exc)) from exc

    def delete_many(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            self._redis.delete(*keys)
        except redis.RedisError as exc:
            raise CacheStoreError("delete", None, str(exc)) from exc


def create_store(config: "CacheConfig") -> FragmentStore:
    """Build the fragment store described by ``config``.

    Order of backend selection:
        1. ``config.store`` as given
        2. ``config.redis_client`` wrapped in a :class:`RedisFragmentStore`
        3. ``fakeredis`` when ``config.use_fakeredis`` is set
        4. Real Redis at ``config.redis_url`` if it answers ``PING``
        5. :class:`InMemoryFragmentStore`
    """
    if config.store is not None:
        return config.store
    if config.redis_client is not None:
        return RedisFragmentStore(config.redis_client, default_ttl=config.default_ttl)
    if config.use_fakeredis:
        import fakeredis

        return RedisFragmentStore(fakeredis.FakeStrictRedis(), default_ttl=config.default_ttl)
    if config.redis_url:
        try:
            client = redis.from_url(config.redis_url, decode_responses=False)
            client.ping()
            return RedisFragmentStore(client, default_ttl=config.default_ttl)
        except redis.RedisError as exc:
            logger.warning(
                f"Redis at {config.redis_url} unavailable ({exc}); using in-memory fragment store"
            )
    return InMemoryFragmentStore(default_ttl=config.default_ttl, max_entries=config.max_entries)


class CacheManager:
    """Key, store, fetch and invalidate scalar fragments.

    Args:
        registry: Schema registry, used to canonicalize versions per class.
        store: Fragment store backend.
        disable_caching: Bypass the store entirely; always render.
        key_prefix: Prefix applied to every key.
        monitor: Optional performance monitor receiving hit/miss events.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: Optional[FragmentStore] = None,
        disable_caching: bool = False,
        key_prefix: str = "cached_json:",
        monitor: Optional["PerformanceMonitor"] = None,
    ) -> None:
        self.registry = registry
        self.store = store if store is not None else InMemoryFragmentStore()
        self.disable_caching = disable_caching
        self.key_prefix = key_prefix
        self._monitor = monitor

    def _key_version(self, cls: type, version: str) -> str:
        if version in self.registry.lookup(cls).known_versions:
            return version
        return OTHER_VERSIONS

    def make_key(self, cls: type, instance_id: Any, version: str, exposure: ExposureLevel) -> str:
        """Derive the cache key of a (class, id, version, exposure) fragment."""
        return (
            f"{self.key_prefix}{class_key(cls)}:{key_id(instance_id)}:"
            f"{self._key_version(cls, version)}:{ExposureLevel.parse(exposure).name.lower()}"
        )

    def keys_for(self, cls: type, instance_id: Any) -> List[str]:
        """Every key that could hold a fragment of ``(cls, instance_id)``."""
        versions = sorted(self.registry.lookup(cls).known_versions) + [OTHER_VERSIONS]
        return [
            f"{self.key_prefix}{class_key(cls)}:{key_id(instance_id)}:{version}:{level.name.lower()}"
            for version in versions
            for level in ExposureLevel
        ]

    def _read(self, key: str) -> Optional[Fragment]:
        try:
            return self.store.get(key)
        except Exception as exc:
            logger.warning(f"Fragment store read failed for {key}; rendering instead: {exc}")
            if self._monitor:
                self._monitor.record_store_error("get", key)
            return None

    def _write(self, key: str, fragment: Fragment) -> None:
        try:
            self.store.set(key, fragment)
        except Exception as exc:
            logger.error(f"Fragment store write failed for {key}: {exc}")
            if self._monitor:
                self._monitor.record_store_error("set", key)

    def get_or_render(
        self,
        cls: type,
        instance_id: Any,
        version: str,
        exposure: ExposureLevel,
        render_fn: RenderFn,
    ) -> Fragment:
        """Return the cached fragment, rendering and storing it on a miss.

        Args:
            cls: Class of the instance.
            instance_id: Stable id of the instance.
            version: Requested version.
            exposure: Requested exposure level.
            render_fn: Zero-argument callable producing the fragment.

        Returns:
            Scalar-only fragment.
        """
        if self.disable_caching:
            return render_fn()

        start_time = time.time()
        key = self.make_key(cls, instance_id, version, exposure)
        cached = self._read(key)
        if cached is not None:
            if self._monitor:
                self._monitor.record_cache_hit(time.time() - start_time)
            logger.debug(f"Fragment cache hit: {key}")
            return cached

        fragment = render_fn()
        self._write(key, fragment)
        if self._monitor:
            self._monitor.record_cache_miss(time.time() - start_time)
        logger.debug(f"Fragment cache miss: {key}")
        return fragment

    def get_or_render_many(
        self,
        items: Sequence[Tuple[type, Any, RenderFn]],
        version: str,
        exposure: ExposureLevel,
    ) -> List[Fragment]:
        """Batched :meth:`get_or_render` over ``(cls, instance_id, render_fn)`` items.

        Uses the store's ``get_many`` when it has one so a collection costs a
        single round trip on a warm cache. Results keep the order of ``items``.
        """
        if self.disable_caching:
            return [render_fn() for _, _, render_fn in items]
        if not items:
            return []

        batch_start = time.time()
        keys = [self.make_key(cls, instance_id, version, exposure) for cls, instance_id, _ in items]
        get_many = getattr(self.store, "get_many", None)
        if get_many is not None:
            try:
                found = get_many(keys)
            except Exception as exc:
                logger.warning(f"Fragment store batch read failed; rendering instead: {exc}")
                if self._monitor:
                    self._monitor.record_store_error("get_many")
                found = {}
        else:
            found = {}
            for key in keys:
                cached = self._read(key)
                if cached is not None:
                    found[key] = cached

        # each item is charged an equal share of the batch read
        read_share = (time.time() - batch_start) / len(keys)
        fragments: List[Fragment] = []
        for key, (_, _, render_fn) in zip(keys, items):
            cached = found.get(key)
            if cached is not None:
                if self._monitor:
                    self._monitor.record_cache_hit(read_share)
                fragments.append(cached)
                continue
            start_time = time.time()
            fragment = render_fn()
            self._write(key, fragment)
            if self._monitor:
                self._monitor.record_cache_miss(read_share + time.time() - start_time)
            fragments.append(fragment)
        logger.debug(f"Fragment batch lookup: {len(found)}/{len(keys)} hits")
        return fragments

    def invalidate(self, cls: type, instance_id: Any) -> None:
        """Delete every cached fragment of ``(cls, instance_id)``.

        Raises:
            CacheStoreError: The store failed to delete; stale entries may remain.
        """
        keys = self.keys_for(cls, instance_id)
        delete_many = getattr(self.store, "delete_many", None)
        try:
            if delete_many is not None:
                delete_many(keys)
            else:
                for key in keys:
                    self.store.delete(key)
        except Exception as exc:
            logger.error(f"Invalidation of {class_key(cls)}:{instance_id} failed: {exc}")
            if self._monitor:
                self._monitor.record_store_error("delete")
            if isinstance(exc, CacheStoreError):
                raise
            raise CacheStoreError("delete", None, str(exc)) from exc
        if self._monitor:
            self._monitor.record_invalidation()
        logger.debug(f"Invalidated {len(keys)} fragment keys for {class_key(cls)}:{instance_id}")
