"""
Response Validator.

The single place where type-specific response rules live. Every other
component treats a value as already adjudicated here.

    validate(response_type, value, required, constraints) -> ValidationResult

Failures are returned, never raised: bad user input is data.
``constraints`` keys (all optional):
    min_value, max_value   inclusive bounds for SCALE / NUMBER
    options                allowed option values (str or ResponseOption)
    max_length             upper bound on TEXT length
"""

from __future__ import annotations

import math
import re
from datetime import date
from typing import Any, Callable, Mapping

from careforms.engine.types import (
    VALID,
    ErrorCode,
    Item,
    ResponseOption,
    ResponseType,
    TemplateDefinition,
    ValidationResult,
    assert_exhaustive,
    parse_response_type,
)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def is_empty(value: Any) -> bool:
    """The emptiness predicate shared by validation and progress.

    ``None``, ``""`` and empty lists are empty. ``False`` and ``0`` are answers.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _fail(code: ErrorCode, message: str) -> ValidationResult:
    return ValidationResult(valid=False, error=code, message=message)


def _is_number(value: Any) -> bool:
    # bool is an int subclass; a checkbox value is not a number.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _check_range(value: float, constraints: Mapping) -> ValidationResult:
    lo = constraints.get("min_value")
    hi = constraints.get("max_value")
    if lo is not None and value < lo:
        return _fail(ErrorCode.OUT_OF_RANGE, f"Value must be at least {lo}")
    if hi is not None and value > hi:
        return _fail(ErrorCode.OUT_OF_RANGE, f"Value must be at most {hi}")
    return VALID


def _allowed_options(constraints: Mapping) -> set[str]:
    allowed = set()
    for option in constraints.get("options") or ():
        allowed.add(option.value if isinstance(option, ResponseOption) else str(option))
    return allowed


# ── Per-type checks ──────────────────────────────────────────────────────────

def _check_scale(value, constraints):
    if not _is_number(value):
        return _fail(ErrorCode.OUT_OF_RANGE, "Must be a number")
    if isinstance(value, float) and not value.is_integer():
        return _fail(ErrorCode.OUT_OF_RANGE, "Must be a whole number")
    return _check_range(value, constraints)


def _check_number(value, constraints):
    if not _is_number(value):
        return _fail(ErrorCode.OUT_OF_RANGE, "Must be a number")
    return _check_range(value, constraints)


def _check_yes_no(value, constraints):
    if not isinstance(value, bool):
        return _fail(ErrorCode.INVALID_TYPE, "Must be yes or no")
    return VALID


def _check_single_choice(value, constraints):
    if not isinstance(value, str):
        return _fail(ErrorCode.INVALID_OPTION, "Must select an option")
    if value not in _allowed_options(constraints):
        return _fail(ErrorCode.INVALID_OPTION, "Invalid option selected")
    return VALID


def _check_multiple_choice(value, constraints):
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        return _fail(ErrorCode.INVALID_OPTION, "Must be a list of selections")
    allowed = _allowed_options(constraints)
    if any(v not in allowed for v in value):
        return _fail(ErrorCode.INVALID_OPTION, "Invalid options selected")
    return VALID


def _check_text(value, constraints):
    if not isinstance(value, str):
        return _fail(ErrorCode.INVALID_FORMAT, "Must be text")
    max_length = constraints.get("max_length")
    if max_length is not None and len(value) > max_length:
        return _fail(ErrorCode.OUT_OF_RANGE, f"Must be at most {max_length} characters")
    return VALID


def _check_date(value, constraints):
    if not isinstance(value, str) or not _ISO_DATE.match(value):
        return _fail(ErrorCode.INVALID_FORMAT, "Date must be in YYYY-MM-DD format")
    try:
        date.fromisoformat(value)
    except ValueError:
        return _fail(ErrorCode.INVALID_FORMAT, "Not a valid calendar date")
    return VALID


_CHECKS: dict[ResponseType, Callable[[Any, Mapping], ValidationResult]] = {
    ResponseType.SCALE: _check_scale,
    ResponseType.YES_NO: _check_yes_no,
    ResponseType.SINGLE_CHOICE: _check_single_choice,
    ResponseType.MULTIPLE_CHOICE: _check_multiple_choice,
    ResponseType.TEXT: _check_text,
    ResponseType.DATE: _check_date,
    ResponseType.NUMBER: _check_number,
}
assert_exhaustive(_CHECKS, "validator checks")


# ── Public API ───────────────────────────────────────────────────────────────

def validate(
    response_type: ResponseType | str,
    value: Any,
    required: bool = False,
    constraints: Mapping | None = None,
) -> ValidationResult:
    """Decide whether ``value`` is a well-formed answer for the declared type.

    Raises:
        UnknownResponseTypeError: ``response_type`` is outside the enumeration.
    """
    check = _CHECKS[parse_response_type(response_type)]
    if is_empty(value):
        if required:
            return _fail(ErrorCode.MISSING_REQUIRED_VALUE, "This field is required")
        return VALID
    return check(value, constraints or {})


def validate_item(item: Item, value: Any) -> ValidationResult:
    """Validate ``value`` against an item's own type, required flag and constraints."""
    return validate(item.response_type, value, item.required, item.constraints())


def validate_responses(
    template: TemplateDefinition,
    responses: Mapping[str, Any],
) -> dict[str, ValidationResult]:
    """Validate every item of ``template`` (touched or not).

    Returns only the failures, keyed by item id, in template order. Response
    keys that match no item in the template are ignored.
    """
    errors: dict[str, ValidationResult] = {}
    for item in template.iter_items():
        result = validate_item(item, responses.get(item.id))
        if not result.valid:
            errors[item.id] = result
    return errors
