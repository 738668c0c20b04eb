"""
Service-layer exception hierarchy.

Only genuine errors are raised: a missing record, malformed input, or a
unique-key collision.  Business-rule refusals produced by the workflow
engine (gate not satisfied, vendor unresolved, too few states) are returned
as ``Refusal`` values instead, so callers can render them field by field.

Usage:
    from caseflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Journey", resource_id=42)
    raise ValidationError("Invalid JSON body", details={"config": "must be an object"})
"""

from __future__ import annotations

from dataclasses import dataclass, field


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for both genuinely missing records and cross-tenant lookups, so a
    caller cannot probe for other tenants' ids.

    Maps to HTTP 404.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed (wrong types, missing body).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


@dataclass
class Refusal:
    """A business-rule refusal returned (not raised) by the workflow engine.

    ``code`` is one of the ``caseflow.utils.errors.E`` constants; ``details``
    names the exact missing fields, tasks, keys or preconditions.
    """

    code: str
    message: str
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message, "details": self.details}
