"""Form template service layer.

Template store for the form engine: every structural or lifecycle change is
loaded into a ``TemplateBuilder``, applied in memory and written back in a
single commit.

Rules:
  - db.session.commit() happens only in the service layer.
  - A structural edit on an ACTIVE template bumps ``version``; each ACTIVE
    version gets one FormTemplateVersion snapshot row.
  - There is no ACTIVE -> DRAFT transition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import func, or_, select

from careforms.core.exceptions import FormStateError, NotFoundError, ValidationError
from careforms.engine.builder import (
    ITEM_EDITABLE_FIELDS,
    SECTION_EDITABLE_FIELDS,
    TEMPLATE_EDITABLE_FIELDS,
    TemplateBuilder,
)
from careforms.engine.renderer import AFFORDANCES
from careforms.engine.types import (
    RESPONSE_TYPE_TRAITS,
    TemplateCategory,
    TemplateDefinition,
    TemplateStatus,
)
from careforms.models import db
from careforms.models.forms import FormInstance, FormTemplate, FormTemplateVersion

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_list(data: dict, key: str) -> list:
    value = data.get(key)
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return value


# ── Lookup ────────────────────────────────────────────────────────────────────


def get_template(template_id: int) -> FormTemplate:
    """Return the template row or raise NotFoundError."""
    row = db.session.get(FormTemplate, template_id)
    if row is None:
        raise NotFoundError(resource="FormTemplate", resource_id=template_id)
    return row


def list_templates(
    *,
    category: str | None = None,
    status: str | None = None,
    is_enabled: bool | None = None,
    search: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Filtered, paginated template listing (without section bodies)."""
    stmt = select(FormTemplate)
    if category:
        stmt = stmt.where(FormTemplate.category == category.upper())
    if status:
        stmt = stmt.where(FormTemplate.status == status.upper())
    if is_enabled is not None:
        stmt = stmt.where(FormTemplate.is_enabled.is_(is_enabled))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            FormTemplate.name.ilike(pattern),
            FormTemplate.description.ilike(pattern),
        ))

    total = db.session.execute(
        select(func.count()).select_from(stmt.subquery())
    ).scalar_one()
    rows = db.session.execute(
        stmt.order_by(FormTemplate.category, FormTemplate.name).limit(limit).offset(offset)
    ).scalars().all()
    return [r.to_dict(include_definition=False) for r in rows], total


# ── Core mutation path ────────────────────────────────────────────────────────


def _store_version_snapshot(row: FormTemplate, tpl: TemplateDefinition) -> None:
    exists = db.session.execute(
        select(FormTemplateVersion.id).where(
            FormTemplateVersion.template_id == row.id,
            FormTemplateVersion.version == tpl.version,
        )
    ).scalar_one_or_none()
    if exists is None:
        db.session.add(FormTemplateVersion(
            template_id=row.id,
            version=tpl.version,
            snapshot=tpl.snapshot(),
        ))


def _apply(template_id: int, operation: Callable[[TemplateBuilder], Any]) -> tuple[FormTemplate, Any]:
    """Run one builder operation against a stored template and persist it."""
    row = get_template(template_id)
    tpl = row.to_definition()
    version_before = tpl.version
    result = operation(TemplateBuilder(tpl))
    row.apply_definition(tpl)
    if tpl.status == TemplateStatus.ACTIVE and tpl.version != version_before:
        _store_version_snapshot(row, tpl)
        logger.info(
            "FormTemplate version bumped id=%s version=%s", row.id, tpl.version,
            extra={"template_id": row.id, "version": tpl.version},
        )
    db.session.commit()
    return row, result


# ── Template CRUD ─────────────────────────────────────────────────────────────


def create_template(data: dict, created_by: str | None = None) -> dict:
    """Create a DRAFT, version 1, disabled template.

    Raises:
        ValidationError: missing name, unknown category or scoring method.
    """
    unknown = set(data) - TEMPLATE_EDITABLE_FIELDS
    if unknown:
        raise ValidationError("Unknown template fields", details={"fields": sorted(unknown)})
    builder = TemplateBuilder.new(
        data.get("name") or "",
        data.get("category") or TemplateCategory.ASSESSMENT,
        description=data.get("description"),
        scoring_method=data.get("scoring_method") or "SUM",
        max_score=data.get("max_score"),
    )
    row = FormTemplate(created_by=created_by)
    row.apply_definition(builder.template)
    db.session.add(row)
    db.session.commit()
    logger.info("FormTemplate created id=%s name=%s", row.id, row.name, extra={"template_id": row.id})
    return row.to_dict()


def update_template(template_id: int, data: dict) -> dict:
    """Edit name, description, category or scoring configuration."""
    if "status" in data:
        row = get_template(template_id)
        if data["status"] != row.status:
            raise FormStateError(
                "Status changes only through publish; published templates cannot return to DRAFT",
                current_state=row.status,
            )
        data = {k: v for k, v in data.items() if k != "status"}
    row, _ = _apply(template_id, lambda b: b.update_details(**data))
    logger.info("FormTemplate updated id=%s", row.id, extra={"template_id": row.id})
    return row.to_dict()


def delete_template(template_id: int) -> None:
    """Delete a DRAFT template that has never been instantiated."""
    row = get_template(template_id)
    if row.status != TemplateStatus.DRAFT.value:
        raise FormStateError("Only DRAFT templates can be deleted; disable it instead",
                             current_state=row.status)
    if template_has_instances(template_id):
        raise FormStateError("Template has form instances and cannot be deleted",
                             current_state=row.status)
    db.session.delete(row)
    db.session.commit()
    logger.info("FormTemplate deleted id=%s", template_id, extra={"template_id": template_id})


# ── Sections ──────────────────────────────────────────────────────────────────


def add_section(template_id: int, data: dict) -> dict:
    unknown = set(data) - SECTION_EDITABLE_FIELDS - {"index"}
    if unknown:
        raise ValidationError("Unknown section fields", details={"fields": sorted(unknown)})
    row, section = _apply(template_id, lambda b: b.add_section(
        data.get("title") or "",
        data.get("section_type") or "CUSTOM",
        description=data.get("description"),
        instructions=data.get("instructions"),
        index=data.get("index"),
    ))
    logger.info("Section added template_id=%s section_id=%s", row.id, section.id,
                extra={"template_id": row.id})
    return section.to_dict()


def update_section(template_id: int, section_id: str, data: dict) -> dict:
    _, section = _apply(template_id, lambda b: b.update_section(section_id, **data))
    return section.to_dict()


def remove_section(template_id: int, section_id: str) -> None:
    row, _ = _apply(template_id, lambda b: b.remove_section(section_id))
    logger.info("Section removed template_id=%s section_id=%s", row.id, section_id,
                extra={"template_id": row.id})


def reorder_sections(template_id: int, data: dict) -> list[dict]:
    ordered_ids = _require_list(data, "section_ids")
    _, sections = _apply(template_id, lambda b: b.reorder_sections(ordered_ids))
    return [s.to_dict() for s in sections]


# ── Items ─────────────────────────────────────────────────────────────────────


def add_item(template_id: int, section_id: str, data: dict) -> dict:
    """Add an item; type defaults are applied before any supplied fields."""
    unknown = set(data) - ITEM_EDITABLE_FIELDS - {"index"}
    if unknown:
        raise ValidationError("Unknown item fields", details={"fields": sorted(unknown)})
    if not data.get("response_type"):
        raise ValidationError("response_type is required")
    fields = {k: v for k, v in data.items() if k not in ("response_type", "label", "required", "index")}
    row, item = _apply(template_id, lambda b: b.add_item(
        section_id,
        data["response_type"],
        data.get("label") or "New Question",
        index=data.get("index"),
        required=data.get("required", True),
        **fields,
    ))
    logger.info("Item added template_id=%s item_id=%s type=%s",
                row.id, item.id, item.response_type.value, extra={"template_id": row.id})
    return item.to_dict()


def update_item(template_id: int, item_id: str, data: dict) -> dict:
    _, item = _apply(template_id, lambda b: b.update_item(item_id, **data))
    return item.to_dict()


def remove_item(template_id: int, item_id: str) -> None:
    row, _ = _apply(template_id, lambda b: b.remove_item(item_id))
    logger.info("Item removed template_id=%s item_id=%s", row.id, item_id,
                extra={"template_id": row.id})


def reorder_items(template_id: int, section_id: str, data: dict) -> list[dict]:
    ordered_ids = _require_list(data, "item_ids")
    _, items = _apply(template_id, lambda b: b.reorder_items(section_id, ordered_ids))
    return [i.to_dict() for i in items]


def move_item(template_id: int, item_id: str, data: dict) -> dict:
    target = data.get("section_id")
    if not target:
        raise ValidationError("section_id is required")
    _, item = _apply(template_id, lambda b: b.move_item(item_id, target, data.get("index")))
    return item.to_dict()


# ── Lifecycle ─────────────────────────────────────────────────────────────────


def publish_template(template_id: int) -> dict:
    """DRAFT -> ACTIVE, enabled; stores the first version snapshot.

    Raises:
        FormStateError: template already ACTIVE.
        ValidationError: structural problems (listed under details.problems).
    """
    row = get_template(template_id)
    tpl = row.to_definition()
    TemplateBuilder(tpl).publish()
    row.apply_definition(tpl)
    row.published_at = _utcnow()
    _store_version_snapshot(row, tpl)
    db.session.commit()
    logger.info("FormTemplate published id=%s version=%s", row.id, row.version,
                extra={"template_id": row.id, "version": row.version})
    return row.to_dict()


def set_template_enabled(template_id: int, enabled: bool) -> dict:
    row, _ = _apply(template_id, lambda b: b.set_enabled(enabled))
    logger.info("FormTemplate %s id=%s", "enabled" if enabled else "disabled", row.id,
                extra={"template_id": row.id})
    return row.to_dict()


def list_versions(template_id: int) -> list[dict]:
    row = get_template(template_id)
    return [v.to_dict() for v in row.versions]


def get_version(template_id: int, version: int) -> dict:
    get_template(template_id)
    snap = db.session.execute(
        select(FormTemplateVersion).where(
            FormTemplateVersion.template_id == template_id,
            FormTemplateVersion.version == version,
        )
    ).scalar_one_or_none()
    if snap is None:
        raise NotFoundError(resource="FormTemplateVersion", resource_id=f"{template_id}/v{version}")
    return snap.to_dict(include_snapshot=True)


def template_has_instances(template_id: int) -> bool:
    return db.session.execute(
        select(FormInstance.id).where(FormInstance.template_id == template_id).limit(1)
    ).first() is not None


# ── Catalog ───────────────────────────────────────────────────────────────────


def list_response_types() -> list[dict]:
    """Enumerated response types with their labels and rendering affordance."""
    return [
        {
            "value": rtype.value,
            "label": traits.label,
            "description": traits.description,
            "uses_options": traits.uses_options,
            "uses_range": traits.uses_range,
            "affordance": AFFORDANCES[rtype].value,
        }
        for rtype, traits in RESPONSE_TYPE_TRAITS.items()
    ]
