"""JSON error envelope shared by every careforms endpoint.

    {"error": "<message>", "code": "ERR_*", "details": {...}?}

Usage
-----
    from careforms.utils.errors import api_error, exception_error, E

    return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    return api_error(E.SUBMISSION_INVALID, "Form has 2 invalid item(s)", details=result.to_dict())
    return exception_error(exc)   # any careforms.core.exceptions type
"""

from __future__ import annotations

from flask import jsonify

from careforms.core.exceptions import (
    ConflictError,
    FormStateError,
    HandoffInProgressError,
    NotFoundError,
    UnknownResponseTypeError,
    ValidationError,
)


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"      # 400 missing request field
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"        # 400 malformed value (e.g. response type)
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"  # 422 business rule
    SUBMISSION_INVALID = "ERR_SUBMISSION_INVALID"        # 422 form items failed validation
    NOT_FOUND = "ERR_NOT_FOUND"                          # 404
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"        # 409 duplicate item code
    CONFLICT_STATE = "ERR_CONFLICT_STATE"                # 409 wrong template / instance state
    CONFLICT_BUSY = "ERR_CONFLICT_BUSY"                  # 409 save or submit already in flight
    INTERNAL = "ERR_INTERNAL"                            # 500


_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.SUBMISSION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_BUSY: 409,
    E.INTERNAL: 500,
}

# Most specific first: HandoffInProgressError is a FormStateError
_EXCEPTION_CODES: tuple[tuple[type[Exception], str], ...] = (
    (NotFoundError, E.NOT_FOUND),
    (ValidationError, E.VALIDATION_CONSTRAINT),
    (UnknownResponseTypeError, E.VALIDATION_INVALID),
    (ConflictError, E.CONFLICT_DUPLICATE),
    (HandoffInProgressError, E.CONFLICT_BUSY),
    (FormStateError, E.CONFLICT_STATE),
)

HANDLED_EXCEPTIONS = tuple(exc_type for exc_type, _ in _EXCEPTION_CODES)


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a Flask view.

    ``status`` overrides the code's default; unknown codes answer 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS.get(code, 400)


def exception_error(exc: Exception):
    """Translate a careforms service exception into the error envelope."""
    for exc_type, code in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            break
    else:
        raise TypeError(f"No error code for {type(exc).__name__}")

    details = None
    if isinstance(exc, ValidationError):
        details = exc.details
    elif isinstance(exc, HandoffInProgressError):
        details = {"instance_id": exc.instance_id}
    elif isinstance(exc, FormStateError):
        details = {"current_state": exc.current_state}
    return api_error(code, str(exc), details=details)
