"""cached-json
===========

Fragment cache and composition engine for serializing object graphs to JSON.

Instead of re-rendering a whole object graph on every request, each object's
*scalar* fields are rendered once per (version, exposure level) and cached;
reference fields are composed at read time from the referenced objects' own
cached fragments. Updating one object therefore invalidates one set of cache
entries, never its parents'.

Key capabilities
----------------
- Per-class field schemas with exposure levels (``short < public < all``)
  and version restrictions.
- Cascading exposure for references, cycle protection and a "hide when
  rendered as a child" predicate.
- Value transform pipeline (e.g. HTML escaping) with trusted-field bypass
  and HTML-to-markdown conversion.
- In-process and Redis-backed fragment stores with explicit invalidation.
- Lightweight cache / render metrics.

Design principles
-----------------
1. **Scalar-only caching**: stored fragments never embed references.
2. **Explicit configuration**: one :class:`~cached_json.config.CacheConfig`
   injected into the engine; no ambient settings.
3. **Errors propagate**: resolution and transform failures abort the render
   with class / id / field context; only store reads and writes fail soft.

Minimal quick start
-------------------
>>> from cached_json import CachedJSON, SchemaRegistry, json_field, reference
>>> registry = SchemaRegistry()
>>> @registry.declare(json_field("title"), reference("author", exposure="public"))
... class Post:
...     ...
>>> engine = CachedJSON(registry)
>>> engine.render(post, exposure="public")  # doctest: +SKIP
"""

__version__ = "0.1.0"

from .cache import CacheManager, InMemoryFragmentStore, RedisFragmentStore
from .config import CacheConfig
from .engine import CachedJSON
from .errors import (
    CachedJsonError,
    CacheStoreError,
    FieldResolutionError,
    SchemaNotFoundError,
    TransformError,
)
from .models import (
    ALL_VERSIONS,
    OMITTED,
    UNSPECIFIED_VERSION,
    ClassSchema,
    ExposureLevel,
    FieldKind,
    FieldSpec,
    json_field,
    reference,
)
from .registry import SchemaRegistry
from .transforms import TransformPipeline, escape_html, html_to_markdown

__all__ = [
    "ALL_VERSIONS",
    "OMITTED",
    "UNSPECIFIED_VERSION",
    "CacheConfig",
    "CacheManager",
    "CacheStoreError",
    "CachedJSON",
    "CachedJsonError",
    "ClassSchema",
    "ExposureLevel",
    "FieldKind",
    "FieldResolutionError",
    "FieldSpec",
    "InMemoryFragmentStore",
    "RedisFragmentStore",
    "SchemaNotFoundError",
    "SchemaRegistry",
    "TransformError",
    "TransformPipeline",
    "escape_html",
    "html_to_markdown",
    "json_field",
    "reference",
]
