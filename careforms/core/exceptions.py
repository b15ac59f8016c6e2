"""
Platform-wide exception hierarchy.

Services raise these types and blueprints register one handler per type,
so every endpoint answers with the same HTTP status for the same failure.

Expected user input never travels through here: a response value that fails
validation is reported as a ``ValidationResult`` by the engine. These
exceptions cover requests the service cannot honour at all.

Usage:
    from careforms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="FormTemplate", resource_id=42)
    raise ValidationError("Template is not publishable", details={"problems": [...]})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "FormTemplate", "Item").
        resource_id: The identity that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown for API responses.
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
        super().__init__(f"{resource} with {field}={value!r} already exists")


class FormStateError(Exception):
    """Raised when a template or instance is in the wrong lifecycle state.

    Examples: publishing an ACTIVE template, instantiating a disabled one,
    saving a draft on a completed instance. Maps to HTTP 409.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class HandoffInProgressError(FormStateError):
    """Raised when a draft-save or submit is requested while another one
    for the same form instance has not resolved yet."""

    def __init__(self, instance_id: int | str | None = None) -> None:
        self.instance_id = instance_id
        msg = "A save or submit is already in progress"
        if instance_id is not None:
            msg += f" for instance {instance_id}"
        super().__init__(msg, current_state="busy")


class UnknownResponseTypeError(ValueError):
    """Raised for a response type outside the declared enumeration."""

    def __init__(self, value) -> None:
        self.value = value
        super().__init__(f"Unknown response type: {value!r}")
