"""Process-wide configuration for the fragment engine.

A :class:`CacheConfig` is built once at start-up and handed to
:class:`~cached_json.engine.CachedJSON`; nothing in the package reads
environment variables or mutates global settings.

Example::

        from cached_json import CacheConfig, CachedJSON, escape_html

        config = CacheConfig(
                default_version="v2",
                transforms=[escape_html],
                redis_url="redis://localhost:6379/0",
                default_ttl=600,
        )
        engine = CachedJSON(registry, config)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .models import UNSPECIFIED_VERSION


@dataclass
class CacheConfig:
    """Configuration for caching and rendering behavior.

    Args:
        store: Explicit fragment store; when None one is built by
            :func:`cached_json.cache.create_store` from the settings below.
        default_version: Version used when a render call specifies none.
        disable_caching: Always render, never touch the store.
        transforms: Value transforms ``(field_spec, value) -> value`` applied
            in order to untrusted scalar values.
        max_depth: Maximum number of reference hops below the top-level
            instance; deeper references are omitted. None means unbounded
            (cycles are still guarded).
        key_prefix: Prefix of every cache key.
        default_ttl: Entry lifetime in seconds; None keeps entries until
            invalidated.
        max_entries: In-memory store capacity before it is reset.
        redis_url: Connect a Redis backed store to this URL.
        redis_client: Use this Redis (or compatible) client directly.
        use_fakeredis: Back the Redis store with ``fakeredis`` (tests, demos).
        enable_monitoring: Record hit/miss and render metrics.
        monitor: Performance monitor receiving those metrics; None uses the
            process-wide monitor from :func:`cached_json.monitoring.get_monitor`.
    """

    store: Optional[Any] = None
    default_version: str = UNSPECIFIED_VERSION
    disable_caching: bool = False
    transforms: List[Any] = field(default_factory=list)
    max_depth: Optional[int] = None
    key_prefix: str = "cached_json:"
    default_ttl: Optional[float] = None
    max_entries: int = 10000
    redis_url: Optional[str] = None
    redis_client: Optional[Any] = None
    use_fakeredis: bool = False
    enable_monitoring: bool = True
    monitor: Optional[Any] = None
