"""
Service-wide exception hierarchy.

Every service raises these types; blueprints register handlers against
them once and get consistent HTTP status codes everywhere.

Usage:
    from diligence.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Deal", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404 in blueprint error handlers.

    Args:
        resource: Human-readable entity name (e.g. "Deal", "TaskTemplate").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint): the data
    was well-formed but violated a rule (empty title, offset out of range,
    unknown taxonomy value).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class DuplicateValueError(ConflictError):
    """A taxonomy value is already present (built-in or custom) in its namespace."""

    def __init__(self, namespace: str, value: str) -> None:
        self.namespace = namespace
        super().__init__(resource=f"{namespace} value", field="value", value=value)


class TransportError(Exception):
    """A single-entity create/update call failed in the persistence layer.

    Template application converts it into a per-item failure; it is never
    retried by the caller that caught it.
    """
