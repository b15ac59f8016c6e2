"""
Form template engine — data model.

Structure:
    TemplateDefinition ──1:N──▶ Section ──1:N──▶ Item ──1:N──▶ ResponseOption

A response set (``AssessmentData``) is a plain ``dict`` mapping item id to a
response value. Its shape per item is dictated by ``Item.response_type``:

    YES_NO            bool
    SCALE, NUMBER     int | float
    TEXT, DATE        str            (DATE as ISO ``YYYY-MM-DD``)
    SINGLE_CHOICE     str            (an option value)
    MULTIPLE_CHOICE   list[str]      (option values)

Lifecycle:
    TemplateDefinition.status:  DRAFT --publish--> ACTIVE   (no way back)
    TemplateDefinition.is_enabled toggles independently of status.

Everything here is in-memory and free of Flask/SQLAlchemy so the validator,
calculator, builder and renderer can be used from any caller.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Mapping, Union

from careforms.core.exceptions import UnknownResponseTypeError

ResponseValue = Union[None, bool, int, float, str, list]
AssessmentData = dict  # item id -> ResponseValue


# ═════════════════════════════════════════════════════════════════════════════
# Enumerations
# ═════════════════════════════════════════════════════════════════════════════

class ResponseType(str, Enum):
    SCALE = "SCALE"
    YES_NO = "YES_NO"
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TEXT = "TEXT"
    DATE = "DATE"
    NUMBER = "NUMBER"


class TemplateStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"


class TemplateCategory(str, Enum):
    """Partitions templates by purpose."""
    ASSESSMENT = "ASSESSMENT"
    VISIT_NOTE = "VISIT_NOTE"
    CLIENT_PROFILE = "CLIENT_PROFILE"
    STAFF_PROFILE = "STAFF_PROFILE"


class ScoringMethod(str, Enum):
    SUM = "SUM"
    AVERAGE = "AVERAGE"


class ErrorCode(str, Enum):
    """Item-scoped validation failures."""
    MISSING_REQUIRED_VALUE = "MissingRequiredValue"
    OUT_OF_RANGE = "OutOfRange"
    INVALID_OPTION = "InvalidOption"
    INVALID_TYPE = "InvalidType"
    INVALID_FORMAT = "InvalidFormat"


DEFAULT_SECTION_TYPE = "CUSTOM"


def parse_response_type(value: Any) -> ResponseType:
    """Coerce ``value`` to a ResponseType or raise UnknownResponseTypeError.

    There is deliberately no fallback type.
    """
    if isinstance(value, ResponseType):
        return value
    try:
        return ResponseType(value)
    except ValueError:
        raise UnknownResponseTypeError(value) from None


def assert_exhaustive(table: Mapping, name: str) -> None:
    """Fail at import time if ``table`` is not keyed by exactly every ResponseType."""
    declared = set(ResponseType)
    handled = set(table)
    if declared != handled:
        missing = sorted(t.value for t in declared - handled)
        extra = sorted(str(t) for t in handled - declared)
        raise RuntimeError(
            f"{name} does not cover the response type enumeration "
            f"(missing={missing}, unexpected={extra})"
        )


@dataclass(frozen=True)
class ResponseTypeTraits:
    """Static facts about one response type."""
    label: str
    description: str
    uses_options: bool = False
    uses_range: bool = False


RESPONSE_TYPE_TRAITS: dict[ResponseType, ResponseTypeTraits] = {
    ResponseType.SCALE: ResponseTypeTraits(
        "Scale", "Numeric scale with defined min/max values (e.g. 0-3 for ADL scoring)",
        uses_range=True,
    ),
    ResponseType.YES_NO: ResponseTypeTraits("Yes/No", "Simple yes or no toggle"),
    ResponseType.SINGLE_CHOICE: ResponseTypeTraits(
        "Single Choice", "Select one option from a list", uses_options=True,
    ),
    ResponseType.MULTIPLE_CHOICE: ResponseTypeTraits(
        "Multiple Choice", "Select multiple options from a list", uses_options=True,
    ),
    ResponseType.TEXT: ResponseTypeTraits("Free Text", "Free text response"),
    ResponseType.DATE: ResponseTypeTraits("Date", "Date picker"),
    ResponseType.NUMBER: ResponseTypeTraits("Number", "Numeric input", uses_range=True),
}
assert_exhaustive(RESPONSE_TYPE_TRAITS, "RESPONSE_TYPE_TRAITS")


def new_id(prefix: str) -> str:
    """Allocate a fresh, never-reused identity for a section or item."""
    return f"{prefix}_{uuid.uuid4().hex}"


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


# ═════════════════════════════════════════════════════════════════════════════
# Template structure
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ResponseOption:
    value: str
    label: str
    score: float | None = None

    def to_dict(self) -> dict:
        return _drop_none({"value": self.value, "label": self.label, "score": self.score})

    @classmethod
    def from_dict(cls, data: Mapping) -> "ResponseOption":
        value = str(data["value"])
        return cls(value=value, label=data.get("label") or value, score=data.get("score"))


@dataclass
class Item:
    """A single question/field."""
    id: str
    label: str
    response_type: ResponseType
    required: bool = False
    order: int = 0
    description: str | None = None
    code: str | None = None
    # SCALE / NUMBER
    min_value: float | None = None
    max_value: float | None = None
    # SINGLE_CHOICE / MULTIPLE_CHOICE
    options: list[ResponseOption] = field(default_factory=list)
    # SCALE: stringified scale value -> scored weight
    score_mapping: dict[str, float] | None = None
    # display-only extras
    labels: dict[str, str] | None = None
    unit: str | None = None
    max_length: int | None = None

    @property
    def traits(self) -> ResponseTypeTraits:
        return RESPONSE_TYPE_TRAITS[self.response_type]

    def option_values(self) -> list[str]:
        return [o.value for o in self.options]

    def find_option(self, value: str) -> ResponseOption | None:
        for option in self.options:
            if option.value == value:
                return option
        return None

    @property
    def is_scored(self) -> bool:
        """True when the item declares a score mapping or any option score."""
        if self.score_mapping:
            return True
        return any(o.score is not None for o in self.options)

    def constraints(self) -> dict:
        """Constraint mapping in the shape ``validator.validate`` expects."""
        return {
            "min_value": self.min_value,
            "max_value": self.max_value,
            "options": self.option_values(),
            "max_length": self.max_length,
        }

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "code": self.code,
            "label": self.label,
            "description": self.description,
            "response_type": self.response_type.value,
            "required": self.required,
            "order": self.order,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "options": [o.to_dict() for o in self.options],
            "score_mapping": dict(self.score_mapping) if self.score_mapping else None,
            "labels": dict(self.labels) if self.labels else None,
            "unit": self.unit,
            "max_length": self.max_length,
        }
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> "Item":
        score_mapping = data.get("score_mapping")
        labels = data.get("labels")
        return cls(
            id=str(data.get("id") or new_id("itm")),
            label=data.get("label") or "",
            response_type=parse_response_type(data.get("response_type")),
            required=bool(data.get("required", False)),
            order=int(data.get("order", 0)),
            description=data.get("description"),
            code=data.get("code"),
            min_value=data.get("min_value"),
            max_value=data.get("max_value"),
            options=[ResponseOption.from_dict(o) for o in data.get("options") or []],
            score_mapping={str(k): v for k, v in score_mapping.items()} if score_mapping else None,
            labels={str(k): v for k, v in labels.items()} if labels else None,
            unit=data.get("unit"),
            max_length=data.get("max_length"),
        )


@dataclass
class Section:
    id: str
    title: str
    section_type: str = DEFAULT_SECTION_TYPE
    order: int = 0
    description: str | None = None
    instructions: str | None = None
    items: list[Item] = field(default_factory=list)

    def ordered_items(self) -> list[Item]:
        # sorted() is stable: equal orders keep insertion order.
        return sorted(self.items, key=lambda i: i.order)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "section_type": self.section_type,
            "order": self.order,
            "description": self.description,
            "instructions": self.instructions,
            "items": [i.to_dict() for i in self.ordered_items()],
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "Section":
        return cls(
            id=str(data.get("id") or new_id("sec")),
            title=data.get("title") or "",
            section_type=data.get("section_type") or DEFAULT_SECTION_TYPE,
            order=int(data.get("order", 0)),
            description=data.get("description"),
            instructions=data.get("instructions"),
            items=[Item.from_dict(i) for i in data.get("items") or []],
        )


@dataclass
class TemplateDefinition:
    """A versioned, lifecycle-managed schema of sections and items."""
    name: str
    category: TemplateCategory = TemplateCategory.ASSESSMENT
    id: int | str | None = None
    description: str | None = None
    status: TemplateStatus = TemplateStatus.DRAFT
    version: int = 1
    is_enabled: bool = False
    scoring_method: ScoringMethod = ScoringMethod.SUM
    max_score: float | None = None
    sections: list[Section] = field(default_factory=list)

    @property
    def is_instantiable(self) -> bool:
        """New response instances may only be started from ACTIVE, enabled templates."""
        return self.status == TemplateStatus.ACTIVE and self.is_enabled

    def ordered_sections(self) -> list[Section]:
        return sorted(self.sections, key=lambda s: s.order)

    def iter_items(self) -> Iterator[Item]:
        """Yield every item in template order (section order, then item order)."""
        for section in self.ordered_sections():
            yield from section.ordered_items()

    def item_ids(self) -> list[str]:
        return [item.id for item in self.iter_items()]

    def find_section(self, section_id: str) -> Section | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def find_item(self, item_id: str) -> tuple[Section, Item] | tuple[None, None]:
        for section in self.sections:
            for item in section.items:
                if item.id == item_id:
                    return section, item
        return None, None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "status": self.status.value,
            "version": self.version,
            "is_enabled": self.is_enabled,
            "scoring_method": self.scoring_method.value,
            "max_score": self.max_score,
            "sections": [s.to_dict() for s in self.ordered_sections()],
        }

    def snapshot(self) -> dict:
        """Full copy of the structure at the current version.

        Stored alongside every form instance so its responses stay bound to
        the item shape they were filled against.
        """
        return self.to_dict()

    @classmethod
    def from_dict(cls, data: Mapping) -> "TemplateDefinition":
        return cls(
            id=data.get("id"),
            name=data.get("name") or "",
            description=data.get("description"),
            category=TemplateCategory(data.get("category") or TemplateCategory.ASSESSMENT),
            status=TemplateStatus(data.get("status") or TemplateStatus.DRAFT),
            version=int(data.get("version") or 1),
            is_enabled=bool(data.get("is_enabled", False)),
            scoring_method=ScoringMethod(data.get("scoring_method") or ScoringMethod.SUM),
            max_score=data.get("max_score"),
            sections=[Section.from_dict(s) for s in data.get("sections") or []],
        )


# ═════════════════════════════════════════════════════════════════════════════
# Derived results
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: ErrorCode | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"valid": self.valid}
        if self.error is not None:
            data["error"] = self.error.value
            data["message"] = self.message
        return data


VALID = ValidationResult(valid=True)


@dataclass(frozen=True)
class Progress:
    answered_count: int
    total_count: int
    required_outstanding: int
    required_count: int = 0

    @property
    def percent(self) -> float:
        if not self.total_count:
            return 0.0
        return round(self.answered_count / self.total_count * 100, 1)

    @property
    def is_complete(self) -> bool:
        return self.required_outstanding == 0

    def to_dict(self) -> dict:
        return {
            "answered_count": self.answered_count,
            "total_count": self.total_count,
            "required_count": self.required_count,
            "required_outstanding": self.required_outstanding,
            "percent": self.percent,
            "is_complete": self.is_complete,
        }
