"""Schema registry: which fields each class exposes.

The registry is the single source of truth consulted by the renderer, the
composer and the cache manager. It is populated once at start-up (directly via
:meth:`SchemaRegistry.register` or with the :meth:`SchemaRegistry.declare`
class decorator) and treated as read-only afterwards.

Invariants:
    - Registration is idempotent: an equal schema may be registered again
    - A class is never re-registered with a different schema
    - Once frozen, no new classes can be registered
    - Reads take no lock; writes are serialized

Example:
    >>> from cached_json import SchemaRegistry, json_field
    >>> registry = SchemaRegistry()
    >>> @registry.declare(json_field("name"), json_field("email", exposure="all"))
    ... class User:
    ...     def __init__(self, id, name, email):
    ...         self.id, self.name, self.email = id, name, email
    >>> [spec.name for spec in registry.lookup(User).fields]
    ['name', 'email']
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import DuplicateRegistrationError, RegistryFrozenError, SchemaNotFoundError
from .models import ClassSchema, FieldSpec

logger = logging.getLogger(__name__)


def class_key(cls: type) -> str:
    """Deterministic class identifier used in cache keys and cycle detection."""
    return f"{cls.__module__}.{cls.__qualname__}"


class SchemaRegistry:
    """Map classes to their :class:`ClassSchema`."""

    def __init__(self) -> None:
        self._schemas: Dict[type, ClassSchema] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def register(
        self,
        cls: type,
        fields: Iterable[FieldSpec],
        hide_as_child_when: Optional[Callable[[Any], bool]] = None,
        id_attribute: str = "id",
    ) -> ClassSchema:
        """Register the JSON schema of ``cls``.

        Args:
            cls: Class whose instances will be rendered.
            fields: Field specs in serialization order.
            hide_as_child_when: Optional predicate hiding instances rendered as
                references of another instance.
            id_attribute: Attribute holding the stable instance id.

        Returns:
            The registered (or already present, equal) schema.

        Raises:
            DuplicateRegistrationError: ``cls`` already has a different schema.
            RegistryFrozenError: The registry was frozen.
        """
        schema = ClassSchema(
            cls=cls,
            fields=tuple(fields),
            hide_as_child_when=hide_as_child_when,
            id_attribute=id_attribute,
        )
        with self._lock:
            existing = self._schemas.get(cls)
            if existing is not None:
                if existing == schema:
                    return existing
                raise DuplicateRegistrationError(class_key(cls))
            if self._frozen:
                raise RegistryFrozenError(class_key(cls))
            self._schemas[cls] = schema
        logger.debug(f"Registered JSON schema for {class_key(cls)} ({len(schema.fields)} fields)")
        return schema

    def declare(
        self,
        *fields: FieldSpec,
        hide_as_child_when: Optional[Callable[[Any], bool]] = None,
        id_attribute: str = "id",
    ) -> Callable[[type], type]:
        """Class decorator form of :meth:`register`."""

        def decorator(cls: type) -> type:
            self.register(
                cls,
                fields,
                hide_as_child_when=hide_as_child_when,
                id_attribute=id_attribute,
            )
            return cls

        return decorator

    def freeze(self) -> None:
        """Reject any further registration."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, cls: type) -> ClassSchema:
        """Return the schema for ``cls`` or its nearest registered base class.

        Raises:
            SchemaNotFoundError: Neither ``cls`` nor any base is registered.
        """
        for klass in cls.__mro__:
            schema = self._schemas.get(klass)
            if schema is not None:
                return schema
        raise SchemaNotFoundError(class_key(cls))

    def schema_for(self, instance: Any) -> ClassSchema:
        return self.lookup(type(instance))

    def is_registered(self, obj: Any) -> bool:
        cls = obj if isinstance(obj, type) else type(obj)
        return any(klass in self._schemas for klass in cls.__mro__)

    def classes(self) -> List[type]:
        return list(self._schemas)

    def __contains__(self, obj: Any) -> bool:
        return self.is_registered(obj)

    def __len__(self) -> int:
        return len(self._schemas)
