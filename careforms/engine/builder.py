"""
Template Builder — structural mutation and lifecycle of one TemplateDefinition.

Every structural operation re-derives ``order`` as a dense, zero-based
sequence for the list it touched; caller-supplied order values are never
trusted. Section and item ids are allocated once and never reused.

Versioning:
    Any edit that changes how responses validate or score (add/remove/reorder/
    move, response type, option values or scores, range, required, max_length,
    score_mapping) applied to an ACTIVE template bumps ``version`` by one.
    Wording edits (label, description, code, unit, scale labels) never bump.
    Instances keep the snapshot of the version they were started from.

Lifecycle:
    publish()          DRAFT -> ACTIVE, is_enabled=True (checks integrity first)
    set_enabled(bool)  orthogonal switch, allowed in either status
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from careforms.core.exceptions import ConflictError, FormStateError, NotFoundError, ValidationError
from careforms.engine.types import (
    DEFAULT_SECTION_TYPE,
    Item,
    ResponseOption,
    ResponseType,
    ScoringMethod,
    Section,
    TemplateCategory,
    TemplateDefinition,
    TemplateStatus,
    assert_exhaustive,
    new_id,
    parse_response_type,
)

logger = logging.getLogger(__name__)


# ── Defaults per response type ───────────────────────────────────────────────

def _scale_defaults() -> dict:
    return {"min_value": 0, "max_value": 3, "score_mapping": {str(v): v for v in range(0, 4)}}


def _choice_defaults() -> dict:
    return {
        "options": [
            ResponseOption(value="option1", label="Option 1", score=0),
            ResponseOption(value="option2", label="Option 2", score=1),
        ],
    }


_DEFAULT_CONSTRAINTS: dict[ResponseType, Callable[[], dict]] = {
    ResponseType.SCALE: _scale_defaults,
    ResponseType.YES_NO: dict,
    ResponseType.SINGLE_CHOICE: _choice_defaults,
    ResponseType.MULTIPLE_CHOICE: _choice_defaults,
    ResponseType.TEXT: lambda: {"max_length": 2000},
    ResponseType.DATE: dict,
    ResponseType.NUMBER: lambda: {"min_value": 0, "max_value": 100},
}
assert_exhaustive(_DEFAULT_CONSTRAINTS, "builder default constraints")

_CONSTRAINT_FIELDS = ("min_value", "max_value", "options", "score_mapping", "labels", "unit", "max_length")

SECTION_EDITABLE_FIELDS = frozenset({"title", "section_type", "description", "instructions"})
ITEM_EDITABLE_FIELDS = frozenset({
    "label", "description", "code", "required", "response_type",
    "min_value", "max_value", "options", "score_mapping", "labels", "unit", "max_length",
})
TEMPLATE_EDITABLE_FIELDS = frozenset({"name", "description", "category", "scoring_method", "max_score"})


def generate_item_code(section: Section) -> str:
    """Next free ``<SECTIONTYPE>_Q<n>`` code within ``section``."""
    prefix = (section.section_type or DEFAULT_SECTION_TYPE).replace("_", "")
    taken = {item.code for item in section.items}
    n = len(section.items) + 1
    while f"{prefix}_Q{n}" in taken:
        n += 1
    return f"{prefix}_Q{n}"


def _renumber(entries: list) -> None:
    for index, entry in enumerate(entries):
        entry.order = index


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_options(raw: Iterable) -> list[ResponseOption]:
    options = []
    for entry in raw or ():
        if isinstance(entry, ResponseOption):
            options.append(entry)
        elif isinstance(entry, Mapping) and entry.get("value") not in (None, ""):
            options.append(ResponseOption.from_dict(entry))
        else:
            raise ValidationError("Each option needs a non-empty value", details={"option": entry})
        if not (options[-1].score is None or _is_number(options[-1].score)):
            raise ValidationError("Option score must be a number", details={"option": entry})
    values = [o.value for o in options]
    if len(values) != len(set(values)):
        raise ValidationError("Option values must be unique", details={"values": values})
    return options


class TemplateBuilder:
    """Editing surface over one TemplateDefinition."""

    def __init__(self, template: TemplateDefinition) -> None:
        self.template = template

    @classmethod
    def new(
        cls,
        name: str,
        category: TemplateCategory | str = TemplateCategory.ASSESSMENT,
        *,
        description: str | None = None,
        scoring_method: ScoringMethod | str = ScoringMethod.SUM,
        max_score: float | None = None,
    ) -> "TemplateBuilder":
        """Start a fresh template: DRAFT, version 1, disabled."""
        builder = cls(TemplateDefinition(name=""))
        builder.update_details(
            name=name,
            description=description,
            category=category,
            scoring_method=scoring_method,
            max_score=max_score,
        )
        return builder

    # ── internals ────────────────────────────────────────────────────────

    def _structural_change(self) -> None:
        if self.template.status == TemplateStatus.ACTIVE:
            self.template.version += 1
            logger.info(
                "Structural edit on active template id=%s -> version=%s",
                self.template.id, self.template.version,
            )

    def _section(self, section_id: str) -> Section:
        section = self.template.find_section(section_id)
        if section is None:
            raise NotFoundError(resource="Section", resource_id=section_id)
        return section

    def _item(self, item_id: str) -> tuple[Section, Item]:
        section, item = self.template.find_item(item_id)
        if item is None:
            raise NotFoundError(resource="Item", resource_id=item_id)
        return section, item

    def _set_sections(self, sections: list[Section]) -> None:
        _renumber(sections)
        self.template.sections = sections

    @staticmethod
    def _set_items(section: Section, items: list[Item]) -> None:
        _renumber(items)
        section.items = items

    @staticmethod
    def _check_permutation(current: list[str], ordered_ids: list[str], what: str) -> None:
        if sorted(current) != sorted(ordered_ids) or len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationError(
                f"Reorder must list every {what} exactly once",
                details={"expected": current, "received": list(ordered_ids)},
            )

    # ── template metadata ────────────────────────────────────────────────

    def update_details(self, **changes) -> TemplateDefinition:
        """Non-structural edits: name, description, category, scoring config."""
        unknown = set(changes) - TEMPLATE_EDITABLE_FIELDS
        if unknown:
            raise ValidationError("Unknown template fields", details={"fields": sorted(unknown)})
        tpl = self.template
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Template name is required")
            tpl.name = name
        if "description" in changes:
            tpl.description = changes["description"] or None
        try:
            if changes.get("category") is not None:
                tpl.category = TemplateCategory(changes["category"])
            if changes.get("scoring_method") is not None:
                tpl.scoring_method = ScoringMethod(changes["scoring_method"])
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if "max_score" in changes:
            max_score = changes["max_score"]
            if max_score is not None and (not _is_number(max_score) or max_score <= 0):
                raise ValidationError("max_score must be a positive number")
            tpl.max_score = max_score
        return tpl

    # ── sections ─────────────────────────────────────────────────────────

    def add_section(
        self,
        title: str,
        section_type: str = DEFAULT_SECTION_TYPE,
        *,
        description: str | None = None,
        instructions: str | None = None,
        index: int | None = None,
    ) -> Section:
        if not (title or "").strip():
            raise ValidationError("Section title is required")
        section = Section(
            id=new_id("sec"),
            title=title.strip(),
            section_type=section_type or DEFAULT_SECTION_TYPE,
            description=description,
            instructions=instructions,
        )
        sections = self.template.ordered_sections()
        sections.insert(len(sections) if index is None else max(0, index), section)
        self._set_sections(sections)
        self._structural_change()
        return section

    def update_section(self, section_id: str, **changes) -> Section:
        unknown = set(changes) - SECTION_EDITABLE_FIELDS
        if unknown:
            raise ValidationError("Unknown section fields", details={"fields": sorted(unknown)})
        section = self._section(section_id)
        if "title" in changes:
            if not (changes["title"] or "").strip():
                raise ValidationError("Section title is required")
            section.title = changes["title"].strip()
        if "section_type" in changes:
            section.section_type = changes["section_type"] or DEFAULT_SECTION_TYPE
        for attr in ("description", "instructions"):
            if attr in changes:
                setattr(section, attr, changes[attr] or None)
        return section

    def remove_section(self, section_id: str) -> Section:
        section = self._section(section_id)
        self._set_sections([s for s in self.template.ordered_sections() if s.id != section_id])
        self._structural_change()
        return section

    def reorder_sections(self, ordered_ids: list[str]) -> list[Section]:
        current = [s.id for s in self.template.ordered_sections()]
        self._check_permutation(current, ordered_ids, "section")
        if list(ordered_ids) == current:
            return self.template.ordered_sections()
        by_id = {s.id: s for s in self.template.sections}
        self._set_sections([by_id[sid] for sid in ordered_ids])
        self._structural_change()
        return self.template.sections

    def move_section(self, section_id: str, index: int) -> list[Section]:
        ids = [s.id for s in self.template.ordered_sections()]
        if section_id not in ids:
            raise NotFoundError(resource="Section", resource_id=section_id)
        ids.remove(section_id)
        ids.insert(max(0, min(index, len(ids))), section_id)
        return self.reorder_sections(ids)

    # ── items ────────────────────────────────────────────────────────────

    def add_item(
        self,
        section_id: str,
        response_type: ResponseType | str,
        label: str = "New Question",
        *,
        index: int | None = None,
        required: bool = True,
        **fields,
    ) -> Item:
        """Append (or insert at ``index``) a new item with type defaults applied."""
        section = self._section(section_id)
        rtype = parse_response_type(response_type)
        if not (label or "").strip():
            raise ValidationError("Item label is required")
        self._check_code_free(section, fields.get("code"))
        item = Item(
            id=new_id("itm"),
            label=label.strip(),
            response_type=rtype,
            required=bool(required),
        )
        for attr, value in _DEFAULT_CONSTRAINTS[rtype]().items():
            setattr(item, attr, value)
        if fields:
            self._apply_item_fields(item, fields)
        if not item.code:
            item.code = generate_item_code(section)

        items = section.ordered_items()
        items.insert(len(items) if index is None else max(0, index), item)
        self._set_items(section, items)
        self._structural_change()
        return item

    def update_item(self, item_id: str, **changes) -> Item:
        unknown = set(changes) - ITEM_EDITABLE_FIELDS
        if unknown:
            raise ValidationError("Unknown item fields", details={"fields": sorted(unknown)})
        section, item = self._item(item_id)
        self._check_code_free(section, changes.get("code"), item_id)
        if self._apply_item_fields(item, changes):
            self._structural_change()
        return item

    def remove_item(self, item_id: str) -> Item:
        section, item = self._item(item_id)
        self._set_items(section, [i for i in section.ordered_items() if i.id != item_id])
        self._structural_change()
        return item

    def reorder_items(self, section_id: str, ordered_ids: list[str]) -> list[Item]:
        section = self._section(section_id)
        current = [i.id for i in section.ordered_items()]
        self._check_permutation(current, ordered_ids, "item")
        if list(ordered_ids) == current:
            return section.ordered_items()
        by_id = {i.id: i for i in section.items}
        self._set_items(section, [by_id[iid] for iid in ordered_ids])
        self._structural_change()
        return section.items

    def move_item(self, item_id: str, target_section_id: str, index: int | None = None) -> Item:
        """Move an item within its section or into another section."""
        source, item = self._item(item_id)
        target = self._section(target_section_id)
        source_items = [i for i in source.ordered_items() if i.id != item_id]
        target_items = source_items if target is source else target.ordered_items()
        position = len(target_items) if index is None else max(0, min(index, len(target_items)))
        target_items.insert(position, item)
        if target is not source:
            self._set_items(source, source_items)
            if item.code and any(i.code == item.code for i in target.items):
                item.code = generate_item_code(target)
        self._set_items(target, target_items)
        self._structural_change()
        return item

    @staticmethod
    def _check_code_free(section: Section, code: str | None, item_id: str | None = None) -> None:
        if code and any(i.code == code and i.id != item_id for i in section.items):
            raise ConflictError(resource="Item", field="code", value=code)

    def _apply_item_fields(self, item: Item, changes: Mapping) -> bool:
        """Apply field edits to ``item``; return True when the edit is structural."""
        structural = False

        if "response_type" in changes:
            rtype = parse_response_type(changes["response_type"])
            if rtype != item.response_type:
                item.response_type = rtype
                for attr in _CONSTRAINT_FIELDS:
                    setattr(item, attr, [] if attr == "options" else None)
                for attr, value in _DEFAULT_CONSTRAINTS[rtype]().items():
                    setattr(item, attr, value)
                structural = True

        if "label" in changes:
            if not (changes["label"] or "").strip():
                raise ValidationError("Item label is required")
            item.label = changes["label"].strip()
        for attr in ("description", "code", "unit"):
            if attr in changes:
                setattr(item, attr, changes[attr] or None)
        if "required" in changes:
            required = bool(changes["required"])
            if required != item.required:
                item.required = required
                structural = True

        if "options" in changes:
            options = _coerce_options(changes["options"])
            if [(o.value, o.score) for o in options] != [(o.value, o.score) for o in item.options]:
                structural = True
            item.options = options

        range_changed = False
        for attr in ("min_value", "max_value"):
            if attr in changes:
                value = changes[attr]
                if value is not None and not _is_number(value):
                    raise ValidationError(f"{attr} must be a number")
                if (
                    value is not None
                    and item.response_type == ResponseType.SCALE
                    and not float(value).is_integer()
                ):
                    raise ValidationError("Scale bounds must be whole numbers", details={attr: value})
                if value != getattr(item, attr):
                    setattr(item, attr, value)
                    range_changed = True
        if range_changed:
            structural = True
            if item.response_type == ResponseType.SCALE:
                self._regenerate_score_mapping(item)

        if "max_length" in changes:
            max_length = changes["max_length"]
            if max_length is not None and (not isinstance(max_length, int) or max_length <= 0):
                raise ValidationError("max_length must be a positive integer")
            if max_length != item.max_length:
                item.max_length = max_length
                structural = True
        if "score_mapping" in changes:
            mapping = changes["score_mapping"] or None
            if mapping is not None:
                if not all(_is_number(v) for v in mapping.values()):
                    raise ValidationError("score_mapping values must be numbers")
                mapping = {str(k): v for k, v in mapping.items()}
            if mapping != item.score_mapping:
                item.score_mapping = mapping
                structural = True
        if "labels" in changes:
            labels = changes["labels"] or None
            item.labels = {str(k): v for k, v in labels.items()} if labels else None

        return structural

    @staticmethod
    def _regenerate_score_mapping(item: Item) -> None:
        """Cover the new scale range, keeping scores already assigned."""
        lo, hi = item.min_value, item.max_value
        if lo is None or hi is None or lo > hi:
            return
        existing = item.score_mapping or {}
        item.score_mapping = {
            str(v): existing.get(str(v), v) for v in range(int(lo), int(hi) + 1)
        }

    # ── lifecycle ────────────────────────────────────────────────────────

    def check_publishable(self) -> list[str]:
        """Return structural problems that block publishing (empty when fine)."""
        problems = []
        sections = self.template.ordered_sections()
        if not sections:
            problems.append("Template must have at least one section")
        for s_index, section in enumerate(sections, start=1):
            where = f"Section {s_index} ({section.title})"
            items = section.ordered_items()
            if not items:
                problems.append(f"{where}: must have at least one item")
            codes: set[str] = set()
            for i_index, item in enumerate(items, start=1):
                at = f"{where}, item {i_index}"
                if item.code:
                    if item.code in codes:
                        problems.append(f'{at}: duplicate code "{item.code}"')
                    codes.add(item.code)
                if not item.label:
                    problems.append(f"{at}: label is required")
                traits = item.traits
                if item.response_type == ResponseType.SCALE:
                    if item.min_value is None or item.max_value is None:
                        problems.append(f"{at}: scale requires min_value and max_value")
                    elif not all(float(v).is_integer() for v in (item.min_value, item.max_value)):
                        problems.append(f"{at}: scale bounds must be whole numbers")
                    elif item.min_value >= item.max_value:
                        problems.append(f"{at}: min_value must be less than max_value")
                elif traits.uses_range and item.min_value is not None and item.max_value is not None:
                    if item.min_value >= item.max_value:
                        problems.append(f"{at}: min_value must be less than max_value")
                if traits.uses_options:
                    values = item.option_values()
                    if not values:
                        problems.append(f"{at}: choice items require at least one option")
                    elif len(values) != len(set(values)):
                        problems.append(f"{at}: option values must be unique")
        return problems

    def publish(self) -> TemplateDefinition:
        tpl = self.template
        if tpl.status == TemplateStatus.ACTIVE:
            raise FormStateError("Template is already published", current_state=tpl.status.value)
        problems = self.check_publishable()
        if problems:
            raise ValidationError("Template is not publishable", details={"problems": problems})
        tpl.status = TemplateStatus.ACTIVE
        tpl.is_enabled = True
        logger.info("Template published id=%s version=%s", tpl.id, tpl.version)
        return tpl

    def set_enabled(self, enabled: bool) -> TemplateDefinition:
        self.template.is_enabled = bool(enabled)
        return self.template
