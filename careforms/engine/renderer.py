"""
Response Renderer — live editing surface over one form instance.

A FormSession holds the template being filled, the in-progress response set
and the transient per-item error map. It exposes:

    render()          ordered sections/items with affordance, value and error
    set_value()       update one item; clears that item's recorded error
    save_draft()      hand the raw responses to the draft collaborator
    submit()          validate every item, then hand off to the submit collaborator
    progress          live progress, independent of validation outcome

Hand-off guard:
    At most one draft-save or submit is in flight per instance. The guard is a
    lock owned by the session (or shared between sessions of the same instance
    through ``handoff_lock``); a request made while it is held raises
    HandoffInProgressError instead of queueing.

A collaborator failure propagates to the caller unchanged; the held
responses are never modified by a hand-off.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from careforms.core.exceptions import (
    FormStateError,
    HandoffInProgressError,
    NotFoundError,
    ValidationError,
)
from careforms.engine import calculator
from careforms.engine.calculator import ScoreSummary, SectionProgress
from careforms.engine.types import (
    Item,
    Progress,
    ResponseType,
    TemplateDefinition,
    ValidationResult,
    assert_exhaustive,
    parse_response_type,
)
from careforms.engine.validator import validate_item, validate_responses

logger = logging.getLogger(__name__)

Collaborator = Callable[[dict], Any]


class Affordance(str, Enum):
    TOGGLE_PAIR = "toggle_pair"
    BUTTON_SET = "button_set"
    TEXT_INPUT = "text_input"
    DATE_PICKER = "date_picker"
    NUMBER_INPUT = "number_input"
    SINGLE_SELECT_CHIPS = "single_select_chips"
    MULTI_SELECT_CHIPS = "multi_select_chips"


AFFORDANCES: dict[ResponseType, Affordance] = {
    ResponseType.YES_NO: Affordance.TOGGLE_PAIR,
    ResponseType.SCALE: Affordance.BUTTON_SET,
    ResponseType.TEXT: Affordance.TEXT_INPUT,
    ResponseType.DATE: Affordance.DATE_PICKER,
    ResponseType.NUMBER: Affordance.NUMBER_INPUT,
    ResponseType.SINGLE_CHOICE: Affordance.SINGLE_SELECT_CHIPS,
    ResponseType.MULTIPLE_CHOICE: Affordance.MULTI_SELECT_CHIPS,
}
assert_exhaustive(AFFORDANCES, "AFFORDANCES")


def select_affordance(response_type: ResponseType | str) -> Affordance:
    """Rendering affordance for a response type.

    Raises:
        UnknownResponseTypeError: for anything outside the enumeration.
    """
    return AFFORDANCES[parse_response_type(response_type)]


def _scale_choices(item: Item) -> list[dict]:
    if item.min_value is None or item.max_value is None:
        return []
    labels = item.labels or {}
    return [
        {"value": v, "label": labels.get(str(v), str(v))}
        for v in range(int(item.min_value), int(item.max_value) + 1)
    ]


@dataclass
class RenderedItem:
    item: Item
    affordance: Affordance
    value: Any = None
    error: ValidationResult | None = None

    def to_dict(self) -> dict:
        item = self.item
        data = {
            "item_id": item.id,
            "code": item.code,
            "label": item.label,
            "description": item.description,
            "response_type": item.response_type.value,
            "affordance": self.affordance.value,
            "required": item.required,
            "value": self.value,
            "error": self.error.to_dict() if self.error else None,
        }
        if item.response_type == ResponseType.SCALE:
            data["choices"] = _scale_choices(item)
        elif item.traits.uses_options:
            data["choices"] = [o.to_dict() for o in item.options]
        if item.response_type == ResponseType.NUMBER:
            data.update(min_value=item.min_value, max_value=item.max_value, unit=item.unit)
        if item.response_type == ResponseType.TEXT:
            data["max_length"] = item.max_length
        return data


@dataclass
class RenderedSection:
    section_id: str
    title: str
    description: str | None
    instructions: str | None
    progress: SectionProgress
    items: list[RenderedItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "section_id": self.section_id,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "progress": self.progress.to_dict(),
            "items": [i.to_dict() for i in self.items],
        }


@dataclass
class SubmitResult:
    submitted: bool
    errors: dict[str, ValidationResult] = field(default_factory=dict)
    first_error_item_id: str | None = None
    result: Any = None

    def to_dict(self) -> dict:
        return {
            "submitted": self.submitted,
            "errors": {item_id: r.to_dict() for item_id, r in self.errors.items()},
            "first_error_item_id": self.first_error_item_id,
        }


class FormSession:
    """Editing surface for one response set against one template."""

    def __init__(
        self,
        template: TemplateDefinition,
        responses: Mapping[str, Any] | None = None,
        *,
        on_save_draft: Collaborator | None = None,
        on_submit: Collaborator | None = None,
        instance_id: int | str | None = None,
        handoff_lock: threading.Lock | None = None,
    ) -> None:
        self.template = template
        self.responses: dict = copy.deepcopy(dict(responses or {}))
        self.errors: dict[str, ValidationResult] = {}
        self.instance_id = instance_id
        self.finalized = False
        self._on_save_draft = on_save_draft
        self._on_submit = on_submit
        self._handoff_lock = handoff_lock or threading.Lock()
        self._in_flight: str | None = None

    # ── guard state ──────────────────────────────────────────────────────

    @property
    def in_flight(self) -> str | None:
        """Name of the hand-off currently outstanding ("save_draft"/"submit")."""
        return self._in_flight

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None or self._handoff_lock.locked()

    @property
    def can_save_draft(self) -> bool:
        return self._on_save_draft is not None and not self.finalized and not self.is_busy

    @property
    def can_submit(self) -> bool:
        return self._on_submit is not None and not self.finalized and not self.is_busy

    # ── derived views ────────────────────────────────────────────────────

    @property
    def progress(self) -> Progress:
        return calculator.progress(self.template, self.responses)

    def section_progress(self) -> list[SectionProgress]:
        return calculator.section_progress(self.template, self.responses)

    def score(self) -> float | None:
        return calculator.score(self.template, self.responses)

    def score_summary(self) -> ScoreSummary:
        return calculator.score_summary(self.template, self.responses)

    @property
    def first_error_item_id(self) -> str | None:
        """First item in template order with a recorded error."""
        for item in self.template.iter_items():
            if item.id in self.errors:
                return item.id
        return None

    def render(self) -> list[RenderedSection]:
        progress_by_section = {p.section_id: p for p in self.section_progress()}
        sections = []
        for section in self.template.ordered_sections():
            sections.append(RenderedSection(
                section_id=section.id,
                title=section.title,
                description=section.description,
                instructions=section.instructions,
                progress=progress_by_section[section.id],
                items=[
                    RenderedItem(
                        item=item,
                        affordance=select_affordance(item.response_type),
                        value=self.responses.get(item.id),
                        error=self.errors.get(item.id),
                    )
                    for item in section.ordered_items()
                ],
            ))
        return sections

    # ── editing ──────────────────────────────────────────────────────────

    def _ensure_editable(self) -> None:
        if self.finalized:
            raise FormStateError("Form has already been submitted", current_state="COMPLETED")

    def _item(self, item_id: str) -> Item:
        _, item = self.template.find_item(item_id)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=item_id)
        return item

    def set_value(self, item_id: str, value: Any) -> ValidationResult:
        """Store ``value`` for the item and drop its recorded error.

        Returns the advisory validation outcome for that single item; it is
        not recorded in ``errors``.
        """
        self._ensure_editable()
        item = self._item(item_id)
        self.responses[item_id] = copy.deepcopy(value)
        self.errors.pop(item_id, None)
        return validate_item(item, value)

    def set_values(self, values: Mapping[str, Any]) -> None:
        for item_id, value in values.items():
            self.set_value(item_id, value)

    def clear_value(self, item_id: str) -> None:
        self._ensure_editable()
        self._item(item_id)
        self.responses.pop(item_id, None)
        self.errors.pop(item_id, None)

    def toggle_option(self, item_id: str, option_value: str) -> list[str]:
        """Select or deselect one option of a MULTIPLE_CHOICE item."""
        item = self._item(item_id)
        if item.response_type != ResponseType.MULTIPLE_CHOICE:
            raise ValidationError(
                "Only multiple choice items can toggle options",
                details={"item_id": item_id, "response_type": item.response_type.value},
            )
        if item.find_option(option_value) is None:
            raise ValidationError("Unknown option", details={"item_id": item_id, "value": option_value})
        current = self.responses.get(item_id)
        selected = list(current) if isinstance(current, (list, tuple)) else []
        if option_value in selected:
            selected = [v for v in selected if v != option_value]
        else:
            selected.append(option_value)
        self.set_value(item_id, selected)
        return selected

    # ── hand-offs ────────────────────────────────────────────────────────

    def _handoff(self, kind: str, collaborator: Collaborator) -> Any:
        if not self._handoff_lock.acquire(blocking=False):
            raise HandoffInProgressError(self.instance_id)
        self._in_flight = kind
        try:
            return collaborator(copy.deepcopy(self.responses))
        except Exception:
            logger.warning(
                "Form %s hand-off failed instance_id=%s", kind, self.instance_id,
                extra={"instance_id": self.instance_id},
            )
            raise
        finally:
            self._in_flight = None
            self._handoff_lock.release()

    def save_draft(self) -> Any:
        """Persist the responses as-is. No validation is run."""
        self._ensure_editable()
        if self._on_save_draft is None:
            raise FormStateError("Draft saving is not available for this form")
        if self.is_busy:
            raise HandoffInProgressError(self.instance_id)
        return self._handoff("save_draft", self._on_save_draft)

    def submit(self) -> SubmitResult:
        """Validate every item; hand off only when nothing fails."""
        self._ensure_editable()
        if self._on_submit is None:
            raise FormStateError("Submission is not available for this form")
        if self.is_busy:
            raise HandoffInProgressError(self.instance_id)

        errors = validate_responses(self.template, self.responses)
        if errors:
            self.errors = errors
            logger.info(
                "Form submission rejected instance_id=%s errors=%d",
                self.instance_id, len(errors),
                extra={"instance_id": self.instance_id},
            )
            return SubmitResult(
                submitted=False,
                errors=dict(errors),
                first_error_item_id=self.first_error_item_id,
            )

        self.errors = {}
        result = self._handoff("submit", self._on_submit)
        self.finalized = True
        return SubmitResult(submitted=True, result=result)
