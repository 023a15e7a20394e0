"""Core data structures describing JSON schemas and render requests.

These lightweight dataclasses are produced once at class-registration time
(see :mod:`cached_json.registry`) and consumed by the renderer, composer and
cache manager. They intentionally avoid framework dependencies and are
immutable, so a populated registry can be shared between threads without
locking.

Overview:
        * ``ExposureLevel`` orders the visibility tiers ``SHORT < PUBLIC < ALL``.
        * ``FieldSpec`` declares one exposed field: how to resolve it, whether it
            is a scalar or a reference, its minimum exposure and its versions.
        * ``ClassSchema`` is the ordered list of field specs for one class plus
            the optional "hide when rendered as a child" predicate.
        * ``RenderRequest`` carries the requested version / exposure level and
            the visited identities used as the cycle guard.

Typical construction (simplified)::

        from cached_json.models import ClassSchema, json_field, reference

        schema = ClassSchema(
                cls=Person,
                fields=(
                        json_field("first"),
                        json_field("born", versions=["v3"]),
                        json_field("email", exposure="all"),
                        reference("friends", exposure="public"),
                ),
        )

Design notes:
        * Field declaration order is serialization order; ``fields`` is a tuple.
        * ``versions=None`` means the field is visible in every version.
        * ``RenderRequest.descend`` always builds a fresh visited set so sibling
            branches never see each other's identities.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, FrozenSet, Iterable, Optional, Tuple, Union

ALL_VERSIONS = None
UNSPECIFIED_VERSION = "unspecified"


class ExposureLevel(IntEnum):
    """Ordered visibility tiers (least to most inclusive)."""

    SHORT = 0
    PUBLIC = 1
    ALL = 2

    @classmethod
    def parse(cls, value: Union["ExposureLevel", str, int]) -> "ExposureLevel":
        """Coerce a level, its (case-insensitive) name or its ordinal.

        Raises:
            ValueError: If ``value`` names no exposure level.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown exposure level: {value!r}") from None
        return cls(value)


class FieldKind(Enum):
    SCALAR = "scalar"
    REFERENCE = "reference"


@dataclass(frozen=True)
class NamedAttribute:
    """Resolve a field by attribute lookup; bound methods are called."""

    name: str

    def resolve(self, instance: Any) -> Any:
        value = getattr(instance, self.name)
        if inspect.ismethod(value) or inspect.isbuiltin(value):
            return value()
        return value


@dataclass(frozen=True)
class Computed:
    """Resolve a field by calling ``fn(instance)``."""

    fn: Callable[[Any], Any]

    def resolve(self, instance: Any) -> Any:
        return self.fn(instance)

    @property
    def name(self) -> str:
        return getattr(self.fn, "__name__", repr(self.fn))


Definition = Union[NamedAttribute, Computed]


@dataclass(frozen=True)
class FieldSpec:
    """One declared field of a class schema.

    Attributes:
        name: Output key, unique within its schema.
        definition: ``NamedAttribute`` or ``Computed`` resolver.
        kind: ``FieldKind.SCALAR`` or ``FieldKind.REFERENCE``.
        min_exposure: Lowest exposure level at which the field is rendered.
        versions: ``None`` (every version) or the versions exposing the field.
        trusted: Bypass the transform pipeline when True.
        markdown: Convert the (HTML) value to markdown before transforms.

    Example:
        >>> spec = FieldSpec(name="born", definition=NamedAttribute("born"), versions=frozenset({"v3"}))
        >>> spec.is_visible("v3", ExposureLevel.SHORT)
        True
        >>> spec.is_visible("v2", ExposureLevel.ALL)
        False
    """

    name: str
    definition: Definition
    kind: FieldKind = FieldKind.SCALAR
    min_exposure: ExposureLevel = ExposureLevel.SHORT
    versions: Optional[FrozenSet[str]] = ALL_VERSIONS
    trusted: bool = False
    markdown: bool = False

    @property
    def is_reference(self) -> bool:
        return self.kind is FieldKind.REFERENCE

    def is_visible(self, version: str, exposure: ExposureLevel) -> bool:
        """Apply the exposure filter, then the version filter."""
        if exposure < self.min_exposure:
            return False
        if self.versions is not None and version not in self.versions:
            return False
        return True


def _definition(name: str, definition: Union[str, Callable[[Any], Any], Definition, None]) -> Definition:
    if definition is None:
        return NamedAttribute(name)
    if isinstance(definition, (NamedAttribute, Computed)):
        return definition
    if isinstance(definition, str):
        return NamedAttribute(definition)
    if callable(definition):
        return Computed(definition)
    raise TypeError(f"Invalid definition for field '{name}': {definition!r}")


def _versions(version: Optional[str], versions: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if version is not None and versions is not None:
        raise ValueError("Pass either 'version' or 'versions', not both")
    if version is not None:
        return frozenset({version})
    if versions is not None:
        return frozenset(versions)
    return ALL_VERSIONS


def json_field(
    name: str,
    definition: Union[str, Callable[[Any], Any], Definition, None] = None,
    *,
    kind: FieldKind = FieldKind.SCALAR,
    exposure: Union[ExposureLevel, str] = ExposureLevel.SHORT,
    version: Optional[str] = None,
    versions: Optional[Iterable[str]] = None,
    trusted: bool = False,
    markdown: bool = False,
) -> FieldSpec:
    """Build a :class:`FieldSpec` from friendly arguments.

    Args:
        name: Output key.
        definition: Attribute name, callable ``instance -> value`` or an explicit
            definition. Defaults to the attribute called ``name``.
        kind: Scalar (default) or reference.
        exposure: Minimum exposure level, as a level or its name.
        version: Restrict the field to a single version.
        versions: Restrict the field to several versions.
        trusted: Skip the transform pipeline.
        markdown: Convert HTML to markdown before transforms.
    """
    return FieldSpec(
        name=name,
        definition=_definition(name, definition),
        kind=kind,
        min_exposure=ExposureLevel.parse(exposure),
        versions=_versions(version, versions),
        trusted=trusted,
        markdown=markdown,
    )


def reference(
    name: str,
    definition: Union[str, Callable[[Any], Any], Definition, None] = None,
    **kwargs: Any,
) -> FieldSpec:
    """Shorthand for ``json_field(..., kind=FieldKind.REFERENCE)``."""
    return json_field(name, definition, kind=FieldKind.REFERENCE, **kwargs)


@dataclass(frozen=True)
class ClassSchema:
    """Ordered field specs for one class.

    Attributes:
        cls: The registered class.
        fields: Field specs in declaration (= serialization) order.
        hide_as_child_when: Optional predicate; when it returns True for an
            instance rendered as somebody's reference, that reference is dropped.
        id_attribute: Attribute holding the stable instance id.
    """

    cls: type
    fields: Tuple[FieldSpec, ...] = ()
    hide_as_child_when: Optional[Callable[[Any], bool]] = None
    id_attribute: str = "id"

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        seen = set()
        for spec in self.fields:
            if spec.name in seen:
                raise ValueError(
                    f"Duplicate field '{spec.name}' in schema for {self.cls.__qualname__}"
                )
            seen.add(spec.name)

    @property
    def scalar_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(spec for spec in self.fields if not spec.is_reference)

    @property
    def reference_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(spec for spec in self.fields if spec.is_reference)

    @property
    def known_versions(self) -> FrozenSet[str]:
        """Every version named by a version-restricted field."""
        versions: set = set()
        for spec in self.fields:
            if spec.versions is not None:
                versions.update(spec.versions)
        return frozenset(versions)

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def visible_fields(self, version: str, exposure: ExposureLevel) -> Tuple[FieldSpec, ...]:
        return tuple(spec for spec in self.fields if spec.is_visible(version, exposure))

    def instance_id(self, instance: Any) -> Any:
        return getattr(instance, self.id_attribute)

    def hides(self, instance: Any) -> bool:
        return bool(self.hide_as_child_when and self.hide_as_child_when(instance))


Identity = Tuple[str, Any]


@dataclass(frozen=True)
class RenderRequest:
    """Parameters of one composition step.

    Attributes:
        version: Requested version.
        exposure: Requested exposure level for this instance.
        visited: Identities ``(class_key, instance_id)`` on the path from the root.
        depth: Number of reference hops from the top-level instance.
        is_child: False only for the top-level instance of a render call.
    """

    version: str
    exposure: ExposureLevel
    visited: FrozenSet[Identity] = field(default_factory=frozenset)
    depth: int = 0
    is_child: bool = False

    def descend(self, identity: Identity, exposure: Optional[ExposureLevel] = None) -> "RenderRequest":
        """Request for a referenced child; ``visited`` is copied, never shared."""
        return RenderRequest(
            version=self.version,
            exposure=self.exposure if exposure is None else exposure,
            visited=self.visited | {identity},
            depth=self.depth + 1,
            is_child=True,
        )


class _Omitted:
    """Marker for a child dropped by the cycle guard or the hide predicate."""

    _instance: Optional["_Omitted"] = None

    def __new__(cls) -> "_Omitted":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "OMITTED"

    def __bool__(self) -> bool:
        return False


OMITTED = _Omitted()
