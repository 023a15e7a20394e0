"""Value transforms applied to resolved scalar values.

A transform is any callable ``(field_spec, value) -> value``. The pipeline runs
them in registration order, each consuming the previous result, for every
untrusted scalar field. Trusted fields bypass the pipeline entirely.

Example::

    from cached_json.transforms import TransformPipeline, escape_html

    pipeline = TransformPipeline([escape_html])
    pipeline.apply(spec, "<b>bold</b>")   # '&lt;b&gt;bold&lt;/b&gt;'
"""

from __future__ import annotations

import html
import logging
from typing import Any, Callable, Iterable, List, Optional

from markdownify import markdownify

from .errors import TransformError
from .models import FieldSpec

logger = logging.getLogger(__name__)

Transform = Callable[[FieldSpec, Any], Any]


def _transform_name(fn: Transform) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or repr(fn)


class TransformPipeline:
    """Ordered chain of value transforms."""

    def __init__(self, transforms: Optional[Iterable[Transform]] = None) -> None:
        self._transforms: List[Transform] = list(transforms or [])

    def add_transform(self, fn: Transform) -> None:
        self._transforms.append(fn)

    @property
    def transforms(self) -> List[Transform]:
        return list(self._transforms)

    def apply(self, field_spec: FieldSpec, value: Any) -> Any:
        """Run every transform on ``value`` unless the field is trusted.

        Raises:
            TransformError: A transform raised; the original exception is chained.
        """
        if field_spec.trusted:
            return value
        for fn in self._transforms:
            try:
                value = fn(field_spec, value)
            except Exception as exc:
                logger.debug(f"Transform {_transform_name(fn)} failed on field {field_spec.name}: {exc}")
                raise TransformError(field_spec.name, _transform_name(fn)) from exc
        return value

    def __len__(self) -> int:
        return len(self._transforms)


def escape_html(field_spec: FieldSpec, value: Any) -> Any:
    """HTML-escape string values; other values pass through."""
    if isinstance(value, str):
        return html.escape(value)
    return value


def html_to_markdown(value: Any) -> Any:
    """Convert an HTML string to markdown text; non-strings pass through."""
    if not isinstance(value, str):
        return value
    return markdownify(value, heading_style="ATX").strip()
