"""Top-level entry points: render, serialize and invalidate.

:class:`CachedJSON` wires the registry, transform pipeline, renderer, cache
manager and composer together from one :class:`~cached_json.config.CacheConfig`.
It is what an HTTP controller calls to produce a response body and what a
persistence layer calls after a create / update / destroy.

Example::

        from cached_json import CachedJSON, CacheConfig, ExposureLevel

        engine = CachedJSON(registry, CacheConfig(default_version="v2"))
        engine.render(person)                                  # dict
        engine.render(people, exposure=ExposureLevel.PUBLIC)   # list of dicts
        engine.to_json(person, version="v3", exposure="all")   # str

        # after person.save()
        engine.invalidate_instance(person)
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any, Dict, List, Optional, Union

from .cache import CacheManager, create_store
from .composer import ReferenceComposer
from .config import CacheConfig
from .errors import CachedJsonError
from .models import ExposureLevel, RenderRequest
from .monitoring import get_monitor
from .registry import SchemaRegistry, class_key
from .renderer import Fragment, FragmentRenderer
from .transforms import TransformPipeline

logger = logging.getLogger(__name__)

ExposureArg = Union[ExposureLevel, str]


class CachedJSON:
    """Render registered objects to JSON through the fragment cache.

    Args:
        registry: Populated schema registry.
        config: Engine configuration; defaults to an in-memory store,
            no transforms and the unspecified default version.
    """

    def __init__(self, registry: SchemaRegistry, config: Optional[CacheConfig] = None) -> None:
        self.registry = registry
        self.config = config or CacheConfig()
        self.monitor = None
        if self.config.enable_monitoring:
            self.monitor = self.config.monitor if self.config.monitor is not None else get_monitor()
        self.pipeline = TransformPipeline(self.config.transforms)
        self.renderer = FragmentRenderer(self.pipeline)
        self.cache = CacheManager(
            registry,
            store=create_store(self.config),
            disable_caching=self.config.disable_caching,
            key_prefix=self.config.key_prefix,
            monitor=self.monitor,
        )
        self.composer = ReferenceComposer(
            registry, self.renderer, self.cache, max_depth=self.config.max_depth
        )

    def _request(self, version: Optional[str], exposure: ExposureArg) -> RenderRequest:
        return RenderRequest(
            version=self.config.default_version if version is None else version,
            exposure=ExposureLevel.parse(exposure),
        )

    def render(
        self,
        obj: Any,
        version: Optional[str] = None,
        exposure: ExposureArg = ExposureLevel.SHORT,
    ) -> Union[Fragment, List[Fragment]]:
        """Render an instance (to a dict) or an iterable of instances (to a list).

        Args:
            obj: Registered instance or iterable of registered instances.
            version: Requested version; defaults to ``config.default_version``.
            exposure: Requested exposure level or its name.

        Raises:
            SchemaNotFoundError: ``obj`` is not a registered instance or collection.
            FieldResolutionError: A field could not be resolved.
            TransformError: A transform failed.
        """
        request = self._request(version, exposure)
        if self.registry.is_registered(obj):
            return self._render_one(obj, request)
        if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes, Mapping)):
            return [self._render_one(item, request) for item in obj]
        return self._render_one(obj, request)

    def _render_one(self, instance: Any, request: RenderRequest) -> Fragment:
        start_time = time.time()
        name = class_key(type(instance))
        try:
            fragment = self.composer.compose(instance, request)
        except CachedJsonError as exc:
            logger.error(f"Rendering {name} failed: {exc.message}")
            if self.monitor:
                self.monitor.record_render(name, time.time() - start_time, error=exc.code)
            raise
        if self.monitor:
            self.monitor.record_render(name, time.time() - start_time)
        # top-level requests are never children, so they are never omitted
        return fragment  # type: ignore[return-value]

    def to_json(
        self,
        obj: Any,
        version: Optional[str] = None,
        exposure: ExposureArg = ExposureLevel.SHORT,
    ) -> str:
        """Render ``obj`` and encode it as compact JSON text."""
        return json.dumps(
            self.render(obj, version=version, exposure=exposure),
            separators=(",", ":"),
            default=str,
        )

    def fragment(
        self,
        instance: Any,
        version: Optional[str] = None,
        exposure: ExposureArg = ExposureLevel.SHORT,
    ) -> Dict[str, Any]:
        """Scalar-only fragment of ``instance`` (through the cache)."""
        request = self._request(version, exposure)
        schema = self.registry.schema_for(instance)
        return self.cache.get_or_render(
            type(instance),
            schema.instance_id(instance),
            request.version,
            request.exposure,
            lambda: self.renderer.render(instance, schema, request.version, request.exposure),
        )

    def invalidate(self, cls: type, instance_id: Any) -> None:
        """Drop every cached fragment of ``(cls, instance_id)``."""
        self.cache.invalidate(cls, instance_id)

    def invalidate_instance(self, instance: Any) -> None:
        schema = self.registry.schema_for(instance)
        self.cache.invalidate(type(instance), schema.instance_id(instance))
