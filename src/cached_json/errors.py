"""Error types raised by the fragment engine.

All errors derive from :class:`CachedJsonError` and carry a machine friendly
``code`` plus a ``details`` mapping so callers (typically an HTTP layer) can
log the failing class / instance / field and pick a response status.

Abort-style errors (:class:`FieldResolutionError`, :class:`TransformError`,
:class:`SchemaNotFoundError`) propagate out of a render call unchanged; the
engine never drops a field to hide one of them.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CachedJsonError(Exception):
    """Base exception for all cached_json errors.

    Attributes:
        message: Human readable description.
        code: Stable identifier for programmatic handling.
        details: Additional context (class name, instance id, field name...).
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CACHED_JSON_ERROR"
        self.details = details or {}


class SchemaNotFoundError(CachedJsonError):
    """No schema is registered for the requested class."""

    def __init__(self, class_name: str) -> None:
        super().__init__(
            f"No JSON schema registered for class '{class_name}'",
            code="SCHEMA_NOT_FOUND",
            details={"class_name": class_name},
        )
        self.class_name = class_name


class FieldResolutionError(CachedJsonError):
    """A field definition could not be resolved against an instance.

    Raised when:
    - The named attribute or method does not exist
    - The attribute getter, method or computed definition raised
    """

    def __init__(
        self,
        field_name: str,
        class_name: Optional[str] = None,
        instance_id: Any = None,
        reason: str = "",
    ) -> None:
        message = f"Cannot resolve field '{field_name}' on {class_name}({instance_id!r})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            code="FIELD_RESOLUTION_ERROR",
            details={
                "class_name": class_name,
                "instance_id": instance_id,
                "field_name": field_name,
            },
        )
        self.field_name = field_name
        self.class_name = class_name
        self.instance_id = instance_id


class TransformError(CachedJsonError):
    """A registered value transform failed.

    The field is never omitted in this case: a failed escape must not turn
    into silently missing data.
    """

    def __init__(
        self,
        field_name: str,
        transform_name: str,
        class_name: Optional[str] = None,
        instance_id: Any = None,
    ) -> None:
        super().__init__(
            f"Transform '{transform_name}' failed on field '{field_name}'"
            f" of {class_name}({instance_id!r})",
            code="TRANSFORM_ERROR",
            details={
                "class_name": class_name,
                "instance_id": instance_id,
                "field_name": field_name,
                "transform": transform_name,
            },
        )
        self.field_name = field_name
        self.transform_name = transform_name
        self.class_name = class_name
        self.instance_id = instance_id


class CacheStoreError(CachedJsonError):
    """The fragment store failed a get/set/delete operation."""

    def __init__(self, operation: str, key: Optional[str] = None, reason: str = "") -> None:
        super().__init__(
            f"Cache store {operation} failed for key {key!r}: {reason}",
            code="CACHE_STORE_ERROR",
            details={"operation": operation, "key": key},
        )
        self.operation = operation
        self.key = key


class DuplicateRegistrationError(CachedJsonError):
    """A different schema was registered for an already registered class."""

    def __init__(self, class_name: str) -> None:
        super().__init__(
            f"Class '{class_name}' is already registered with a different schema",
            code="DUPLICATE_REGISTRATION",
            details={"class_name": class_name},
        )
        self.class_name = class_name


class RegistryFrozenError(CachedJsonError):
    """Registration attempted after the registry was frozen."""

    def __init__(self, class_name: str) -> None:
        super().__init__(
            f"Cannot register '{class_name}': schema registry is frozen",
            code="REGISTRY_FROZEN",
            details={"class_name": class_name},
        )
        self.class_name = class_name
