"""Form instance service layer.

Persistence collaborator for the form renderer. Each request builds a
``FormSession`` over the instance's stored template snapshot and hands it
two collaborators: draft-save (store responses as-is) and submit (store
responses plus computed score, mark COMPLETED).

Rules:
  - db.session.commit() happens only in the service layer.
  - Instances are validated against their own snapshot, never the live template.
  - At most one draft-save/submit is in flight per instance within a process;
    a second request fails fast with HandoffInProgressError.
  - A COMPLETED instance is never modified; corrections start a new instance.
  - Response keys that are not items of the snapshot are kept but ignored.
"""

from __future__ import annotations

import logging
import threading
import weakref
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from careforms.core.exceptions import FormStateError, NotFoundError, ValidationError
from careforms.engine import calculator
from careforms.engine.renderer import FormSession, SubmitResult
from careforms.engine.types import TemplateDefinition
from careforms.models import db
from careforms.models.forms import (
    INSTANCE_COMPLETED,
    INSTANCE_IN_PROGRESS,
    INSTANCE_STATUSES,
    FormInstance,
)
from careforms.services import template_service

logger = logging.getLogger(__name__)

# instance_id -> lock guarding that instance's hand-offs; an entry lives as
# long as some FormSession holds its lock
_handoff_locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
_handoff_registry_lock = threading.Lock()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def handoff_lock(instance_id: int) -> threading.Lock:
    """Process-wide hand-off lock for one instance."""
    with _handoff_registry_lock:
        lock = _handoff_locks.get(instance_id)
        if lock is None:
            lock = _handoff_locks[instance_id] = threading.Lock()
        return lock


def _release_handoff_lock(instance_id: int) -> None:
    with _handoff_registry_lock:
        _handoff_locks.pop(instance_id, None)


def _require_responses(data: dict, key: str = "responses") -> dict:
    responses = data.get(key) or {}
    if not isinstance(responses, dict):
        raise ValidationError(f"{key} must be an object keyed by item id")
    return responses


def get_instance(instance_id: int) -> FormInstance:
    """Return the instance row or raise NotFoundError."""
    row = db.session.get(FormInstance, instance_id)
    if row is None:
        raise NotFoundError(resource="FormInstance", resource_id=instance_id)
    return row


def list_instances(
    *,
    template_id: int | None = None,
    status: str | None = None,
    subject_ref: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[dict]:
    stmt = select(FormInstance)
    if template_id is not None:
        stmt = stmt.where(FormInstance.template_id == template_id)
    if status:
        stmt = stmt.where(FormInstance.status == status.upper())
    if subject_ref:
        stmt = stmt.where(FormInstance.subject_ref == subject_ref)
    rows = db.session.execute(
        stmt.order_by(FormInstance.created_at.desc(), FormInstance.id.desc()).limit(limit).offset(offset)
    ).scalars().all()
    return [r.to_dict() for r in rows]


# ── Collaborators ─────────────────────────────────────────────────────────────


def _commit_or_rollback(row: FormInstance, action: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("FormInstance %s failed id=%s", action, row.id, extra={"instance_id": row.id})
        raise


def _recheck_in_progress(row: FormInstance) -> None:
    """Reload the row under the hand-off lock; a concurrent submit may have completed it."""
    db.session.refresh(row)
    _ensure_in_progress(row)


def _draft_collaborator(row: FormInstance):
    def _save(responses: dict) -> dict:
        _recheck_in_progress(row)
        row.responses = responses
        row.last_draft_saved_at = _utcnow()
        _commit_or_rollback(row, "draft save")
        logger.info("FormInstance draft saved id=%s", row.id, extra={"instance_id": row.id})
        return row.to_dict()
    return _save


def _submit_collaborator(row: FormInstance, tpl: TemplateDefinition):
    def _submit(responses: dict) -> dict:
        _recheck_in_progress(row)
        summary = calculator.score_summary(tpl, responses)
        row.responses = responses
        row.total_score = summary.total
        row.score_summary = summary.to_dict()
        row.status = INSTANCE_COMPLETED
        row.completed_at = _utcnow()
        _commit_or_rollback(row, "submit")
        _release_handoff_lock(row.id)
        logger.info("FormInstance submitted id=%s score=%s", row.id, summary.total,
                    extra={"instance_id": row.id, "template_id": row.template_id})
        return row.to_dict()
    return _submit


def _open_session(row: FormInstance, incoming: dict | None = None) -> FormSession:
    """FormSession over the instance snapshot, with ``incoming`` merged in."""
    tpl = row.to_definition()
    responses = dict(row.responses or {})
    if incoming:
        responses.update(incoming)
    return FormSession(
        tpl,
        responses,
        on_save_draft=_draft_collaborator(row),
        on_submit=_submit_collaborator(row, tpl),
        instance_id=row.id,
        handoff_lock=handoff_lock(row.id),
    )


def _ensure_in_progress(row: FormInstance) -> None:
    if row.is_completed:
        raise FormStateError("Form instance is completed; start a correction instead",
                             current_state=row.status)


# ── Operations ────────────────────────────────────────────────────────────────


def start_instance(data: dict, started_by: str | None = None) -> dict:
    """Start an IN_PROGRESS instance from an ACTIVE, enabled template.

    Raises:
        NotFoundError: unknown template.
        FormStateError: template is DRAFT or disabled.
    """
    template_id = data.get("template_id")
    if not template_id:
        raise ValidationError("template_id is required")
    tpl = template_service.get_template(template_id).to_definition()
    if not tpl.is_instantiable:
        raise FormStateError(
            "Template must be ACTIVE and enabled to start a form",
            current_state=f"{tpl.status.value}/{'enabled' if tpl.is_enabled else 'disabled'}",
        )
    row = FormInstance(
        template_id=tpl.id,
        template_version=tpl.version,
        snapshot=tpl.snapshot(),
        status=INSTANCE_IN_PROGRESS,
        subject_ref=data.get("subject_ref"),
        responses=_require_responses(data),
        started_by=started_by,
    )
    db.session.add(row)
    db.session.commit()
    logger.info("FormInstance started id=%s template_id=%s version=%s",
                row.id, tpl.id, tpl.version,
                extra={"instance_id": row.id, "template_id": tpl.id, "version": tpl.version})
    return row.to_dict()


def instance_view(instance_id: int) -> dict:
    """Instance plus rendered sections and live progress."""
    row = get_instance(instance_id)
    session = FormSession(row.to_definition(), row.responses or {}, instance_id=row.id)
    return {
        "instance": row.to_dict(),
        "template": {
            "id": session.template.id,
            "name": session.template.name,
            "version": row.template_version,
            "category": session.template.category.value,
        },
        "sections": [s.to_dict() for s in session.render()],
        "progress": session.progress.to_dict(),
    }


def instance_progress(instance_id: int) -> dict:
    row = get_instance(instance_id)
    tpl = row.to_definition()
    responses = row.responses or {}
    return {
        "instance_id": row.id,
        "status": row.status,
        "progress": calculator.progress(tpl, responses).to_dict(),
        "sections": [p.to_dict() for p in calculator.section_progress(tpl, responses)],
        "score": calculator.score(tpl, responses),
        "score_summary": calculator.score_summary(tpl, responses).to_dict(),
    }


def save_draft(instance_id: int, data: dict) -> dict:
    """Merge ``data["responses"]`` into the stored set and persist without validation.

    Raises:
        FormStateError: instance is completed.
        HandoffInProgressError: another save/submit for this instance is running.
    """
    row = get_instance(instance_id)
    _ensure_in_progress(row)
    session = _open_session(row, _require_responses(data))
    return session.save_draft()


def submit_instance(instance_id: int, data: dict | None = None) -> tuple[SubmitResult, dict | None]:
    """Validate against the snapshot and complete the instance when clean.

    Returns:
        (SubmitResult, instance dict). The instance dict is None when
        validation failed; nothing is persisted in that case.
    """
    row = get_instance(instance_id)
    _ensure_in_progress(row)
    session = _open_session(row, _require_responses(data or {}))
    result = session.submit()
    return result, result.result if result.submitted else None


def start_correction(instance_id: int, data: dict | None = None, started_by: str | None = None) -> dict:
    """New IN_PROGRESS instance pre-filled from a COMPLETED one.

    The source keeps its responses and score; the correction uses the same
    snapshot so its items line up with the original answers.
    """
    source = get_instance(instance_id)
    if not source.is_completed:
        raise FormStateError("Only completed form instances can be corrected",
                             current_state=source.status)
    data = data or {}
    row = FormInstance(
        template_id=source.template_id,
        template_version=source.template_version,
        snapshot=source.snapshot,
        status=INSTANCE_IN_PROGRESS,
        subject_ref=data.get("subject_ref") or source.subject_ref,
        responses=dict(source.responses or {}),
        corrects_instance_id=source.id,
        started_by=started_by,
    )
    db.session.add(row)
    db.session.commit()
    logger.info("FormInstance correction started id=%s corrects=%s", row.id, source.id,
                extra={"instance_id": row.id, "template_id": row.template_id})
    return row.to_dict()


def validate_status_filter(status: Any) -> str | None:
    if status is None:
        return None
    if str(status).upper() not in INSTANCE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(INSTANCE_STATUSES))}")
    return str(status).upper()
