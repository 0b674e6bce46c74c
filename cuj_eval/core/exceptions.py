"""
Engine-wide exception hierarchy.

Every service raises one of these types so the API layer can register a
single handler per type and map it to a consistent HTTP status:

    NotFoundError          -> 404
    ValidationError        -> 422
    InvalidReferenceError  -> 422
    ConflictError          -> 409

Usage:
    from cuj_eval.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Review", resource_id=42)
    raise ValidationError("usability_score must be between 1 and 4",
                          details={"usability_score": 7})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Review", "CujDatabaseVersion").
        resource_id: The key that was looked up. Composite keys are passed as tuples.
    """

    def __init__(self, resource: str, resource_id: int | str | tuple | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidReferenceError(ValidationError):
    """Raised when a record declares a parent id that does not exist.

    Used by the taxonomy (CUJ -> category, task -> CUJ), by assignments
    (car, category) and by evaluation writes (task, category).

    Args:
        resource: Model being written.
        field: The foreign-key field that failed to resolve.
        value: The unresolved id.
    """

    def __init__(self, resource: str, field: str, value: int | str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"{resource}.{field} references unknown id {value!r}",
            details={field: value},
        )


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule.

    Args:
        resource: Model name.
        field: The unique field (or field pair) that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
