"""Render the scalar-only fragment of one instance.

The renderer projects an instance onto the scalar fields of its schema that
are visible for a (version, exposure level) request. It never touches
reference fields and never caches; both are the composer's and the cache
manager's business respectively.

Per field, in declaration order:
        1. skip references
        2. skip fields below the requested exposure level
        3. skip fields restricted to other versions
        4. resolve the value (attribute, bound method or computed definition)
        5. convert HTML to markdown when the field asks for it
        6. run the transform pipeline unless the field is trusted

Example::

        renderer = FragmentRenderer(TransformPipeline([escape_html]))
        renderer.render(person, registry.schema_for(person), "v2", ExposureLevel.SHORT)
        # {'first': 'Ada', 'last': 'Lovelace', 'middle': 'King', 'name': 'Ada King Lovelace'}
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .errors import FieldResolutionError, TransformError
from .models import ClassSchema, ExposureLevel, FieldSpec
from .registry import class_key
from .transforms import TransformPipeline, html_to_markdown

Fragment = Dict[str, Any]


def resolve(instance: Any, field_spec: FieldSpec, schema: ClassSchema) -> Any:
    """Resolve ``field_spec`` against ``instance``.

    Raises:
        FieldResolutionError: The attribute is missing or its definition raised.
    """
    try:
        return field_spec.definition.resolve(instance)
    except Exception as exc:
        raise FieldResolutionError(
            field_spec.name,
            class_name=class_key(type(instance)),
            instance_id=getattr(instance, schema.id_attribute, None),
            reason=f"{type(exc).__name__}: {exc}",
        ) from exc


class FragmentRenderer:
    """Build scalar fragments for schema-described instances."""

    def __init__(self, pipeline: Optional[TransformPipeline] = None) -> None:
        self.pipeline = pipeline or TransformPipeline()

    def render(
        self,
        instance: Any,
        schema: ClassSchema,
        version: str,
        exposure: ExposureLevel,
    ) -> Fragment:
        """Return the visible scalar fields of ``instance``.

        Args:
            instance: Object described by ``schema``.
            schema: Schema of the instance's class.
            version: Requested version.
            exposure: Requested exposure level.

        Returns:
            Insertion-ordered mapping of field name to rendered value.

        Raises:
            FieldResolutionError: A definition could not be resolved.
            TransformError: A transform failed; identifies the instance.
        """
        fragment: Fragment = {}
        for spec in schema.fields:
            if spec.is_reference or not spec.is_visible(version, exposure):
                continue
            fragment[spec.name] = self.render_value(instance, spec, schema)
        return fragment

    def render_value(self, instance: Any, spec: FieldSpec, schema: ClassSchema) -> Any:
        value = resolve(instance, spec, schema)
        if spec.markdown:
            value = html_to_markdown(value)
        try:
            return self.pipeline.apply(spec, value)
        except TransformError as exc:
            raise TransformError(
                exc.field_name,
                exc.transform_name,
                class_name=class_key(type(instance)),
                instance_id=getattr(instance, schema.id_attribute, None),
            ) from exc.__cause__
