"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.  Structured
"nothing to do" outcomes (duplicate evaluation, field not requiring
review) are results, not exceptions.

Usage:
    from app.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="RiskItem", resource_id=item_id)
    raise InvalidStateError("Cannot assign closed/resolved risk items")
"""


class NotFoundError(Exception):
    """Raised when a risk item, domain risk or referenced field does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "RiskItem", "ProfileField").
        resource_id: The key that was looked up. Included in logs and the message.
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
    """Raised when input is well-formed but violates a business rule.

    Typical cases: a missing or unknown review action, or an action whose
    companion field (mitigation plan, target reviewer) is absent.  Always
    raised before any mutation.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with state owned by someone else.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field holding the conflicting value.
        value: The conflicting value.
        message: Optional full message overriding the generated one.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class InvalidStateError(Exception):
    """Raised when the current lifecycle state forbids the requested operation.

    Mutating a terminal item, unassigning an unassigned item, or asking
    for a transition the state table does not allow.  Maps to HTTP 409.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class ConfigurationError(Exception):
    """Raised when deployment data is inconsistent (e.g. a field with no registry entry).

    Treated as fatal and unexpected.  Maps to HTTP 500.
    """
