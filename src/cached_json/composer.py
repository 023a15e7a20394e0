"""Recursive composition of instance fragments along reference fields.

The composer is the read-time half of the engine: it fetches each instance's
scalar fragment through the cache manager and expands reference fields on top
of it, so a referenced object changing never invalidates its parents.

Rules applied to every reference field visible for the request:
        * Cascade: the child is rendered at ``SHORT`` when the parent's requested
            level equals the field's minimum exposure, at the parent's level
            otherwise. A reference declared ``PUBLIC`` therefore yields short
            children for a ``PUBLIC`` parent and full children for an ``ALL``
            parent.
        * Cycle guard: an identity already on the path from the root is omitted.
        * Hide predicate: ``hide_as_child_when`` drops an instance rendered as a
            child (never the top-level instance).
        * Depth limit: optional ``max_depth`` reference hops.

An omitted single reference removes the field from its parent; omitted
collection members are removed from the list.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from functools import partial
from typing import Any, Dict, List, Optional, Tuple, Union

from .cache import CacheManager
from .errors import FieldResolutionError, SchemaNotFoundError
from .models import (
    OMITTED,
    ClassSchema,
    ExposureLevel,
    FieldSpec,
    Identity,
    RenderRequest,
    _Omitted,
)
from .registry import SchemaRegistry, class_key
from .renderer import Fragment, FragmentRenderer, resolve

logger = logging.getLogger(__name__)


def cascade_exposure(field_spec: FieldSpec, parent_exposure: ExposureLevel) -> ExposureLevel:
    """Exposure level used to render the target of a reference field."""
    if parent_exposure == field_spec.min_exposure:
        return ExposureLevel.SHORT
    return parent_exposure


class ReferenceComposer:
    """Compose full (scalar + reference) fragments for registered instances."""

    def __init__(
        self,
        registry: SchemaRegistry,
        renderer: FragmentRenderer,
        cache: CacheManager,
        max_depth: Optional[int] = None,
    ) -> None:
        self.registry = registry
        self.renderer = renderer
        self.cache = cache
        self.max_depth = max_depth

    def identity(self, instance: Any, schema: ClassSchema) -> Identity:
        return class_key(type(instance)), schema.instance_id(instance)

    def _omit(self, instance: Any, schema: ClassSchema, identity: Identity, request: RenderRequest) -> bool:
        if identity in request.visited:
            logger.debug(f"Omitting cyclic reference to {identity[0]}:{identity[1]}")
            return True
        if request.is_child and schema.hides(instance):
            return True
        if self.max_depth is not None and request.depth > self.max_depth:
            logger.debug(f"Omitting {identity[0]}:{identity[1]} beyond max depth {self.max_depth}")
            return True
        return False

    def compose(self, instance: Any, request: RenderRequest) -> Union[Fragment, _Omitted]:
        """Return the full fragment of ``instance`` or ``OMITTED``.

        Raises:
            SchemaNotFoundError: ``instance`` (or a referenced object) has no schema.
            FieldResolutionError: A field could not be resolved.
            TransformError: A transform failed.
        """
        schema = self.registry.schema_for(instance)
        identity = self.identity(instance, schema)
        if self._omit(instance, schema, identity, request):
            return OMITTED
        fragment = self.cache.get_or_render(
            type(instance),
            identity[1],
            request.version,
            request.exposure,
            partial(self.renderer.render, instance, schema, request.version, request.exposure),
        )
        return self._merge(instance, schema, identity, request, fragment)

    def compose_many(self, instances: Iterable[Any], request: RenderRequest) -> List[Fragment]:
        """Compose a collection, dropping omitted (and ``None``) members.

        Scalar fragments of the surviving members are fetched in one batch.
        """
        prepared: List[Tuple[Any, ClassSchema, Identity]] = []
        for instance in instances:
            if instance is None:
                continue
            schema = self.registry.schema_for(instance)
            identity = self.identity(instance, schema)
            if not self._omit(instance, schema, identity, request):
                prepared.append((instance, schema, identity))

        fragments = self.cache.get_or_render_many(
            [
                (
                    type(instance),
                    identity[1],
                    partial(self.renderer.render, instance, schema, request.version, request.exposure),
                )
                for instance, schema, identity in prepared
            ],
            request.version,
            request.exposure,
        )
        return [
            self._merge(instance, schema, identity, request, fragment)
            for (instance, schema, identity), fragment in zip(prepared, fragments)
        ]

    def _merge(
        self,
        instance: Any,
        schema: ClassSchema,
        identity: Identity,
        request: RenderRequest,
        fragment: Fragment,
    ) -> Fragment:
        result: Dict[str, Any] = {}
        for spec in schema.fields:
            if not spec.is_visible(request.version, request.exposure):
                continue
            if not spec.is_reference:
                if spec.name in fragment:
                    result[spec.name] = fragment[spec.name]
                continue
            child_request = request.descend(identity, cascade_exposure(spec, request.exposure))
            value = self._resolve_reference(instance, spec, schema)
            composed = self._compose_value(value, child_request)
            if composed is not OMITTED:
                result[spec.name] = composed
        return result

    def _resolve_reference(self, instance: Any, spec: FieldSpec, schema: ClassSchema) -> Any:
        """Resolve a reference field, materializing lazy collections.

        Generators and association proxies are only iterated here, so a
        failure while iterating is reported against the owning field.
        """
        value = resolve(instance, spec, schema)
        if (
            value is None
            or self.registry.is_registered(value)
            or isinstance(value, (str, bytes, Mapping))
            or not isinstance(value, Iterable)
        ):
            return value
        try:
            return list(value)
        except Exception as exc:
            raise FieldResolutionError(
                spec.name,
                class_name=class_key(type(instance)),
                instance_id=getattr(instance, schema.id_attribute, None),
                reason=f"{type(exc).__name__}: {exc}",
            ) from exc

    def _compose_value(self, value: Any, request: RenderRequest) -> Any:
        if value is None:
            return None
        if self.registry.is_registered(value):
            return self.compose(value, request)
        if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
            raise SchemaNotFoundError(class_key(type(value)))
        return self.compose_many(value, request)
