"""Form templates, their published version snapshots, and filled-in instances.

The template structure (sections → items → options) is stored as one JSON
document in ``FormTemplate.definition``; the engine works on it through
``to_definition()`` / ``apply_definition()``. Section and item ids inside the
document are stable strings allocated by the builder.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from careforms.engine.types import TemplateDefinition
from careforms.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


INSTANCE_IN_PROGRESS = "IN_PROGRESS"
INSTANCE_COMPLETED = "COMPLETED"
INSTANCE_STATUSES = {INSTANCE_IN_PROGRESS, INSTANCE_COMPLETED}


# ── Form Template ────────────────────────────────────────────────

class FormTemplate(db.Model):
    """A versioned, lifecycle-managed form schema."""

    __tablename__ = "form_templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    category = Column(
        String(30), nullable=False, default="ASSESSMENT"
    )  # ASSESSMENT | VISIT_NOTE | CLIENT_PROFILE | STAFF_PROFILE
    status = Column(String(20), nullable=False, default="DRAFT")  # DRAFT | ACTIVE
    version = Column(Integer, nullable=False, default=1)
    is_enabled = Column(Boolean, nullable=False, default=False)
    scoring_method = Column(String(20), nullable=False, default="SUM")  # SUM | AVERAGE
    max_score = Column(Float, nullable=True)
    definition = Column(JSON, default=dict)  # {"sections": [...]}
    created_by = Column(String(100), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    versions = relationship(
        "FormTemplateVersion",
        backref="template",
        cascade="all, delete-orphan",
        lazy="dynamic",
        order_by="FormTemplateVersion.version",
    )
    instances = relationship("FormInstance", backref="template", lazy="dynamic")

    __table_args__ = (
        Index("ix_form_templates_category_status", "category", "status"),
    )

    def to_definition(self) -> TemplateDefinition:
        """Materialize the row as an engine TemplateDefinition."""
        return TemplateDefinition.from_dict({
            "id": self.id,
            "name": self.name,
            "description": self.description or None,
            "category": self.category,
            "status": self.status,
            "version": self.version,
            "is_enabled": self.is_enabled,
            "scoring_method": self.scoring_method,
            "max_score": self.max_score,
            "sections": (self.definition or {}).get("sections", []),
        })

    def apply_definition(self, tpl: TemplateDefinition) -> None:
        """Write an edited TemplateDefinition back onto the row."""
        data = tpl.to_dict()
        self.name = tpl.name
        self.description = tpl.description or ""
        self.category = data["category"]
        self.status = data["status"]
        self.version = tpl.version
        self.is_enabled = tpl.is_enabled
        self.scoring_method = data["scoring_method"]
        self.max_score = tpl.max_score
        # Reassign so the JSON column is flagged dirty
        self.definition = {"sections": data["sections"]}

    def to_dict(self, include_definition=True):
        sections = (self.definition or {}).get("sections", [])
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "status": self.status,
            "version": self.version,
            "is_enabled": self.is_enabled,
            "scoring_method": self.scoring_method,
            "max_score": self.max_score,
            "section_count": len(sections),
            "item_count": sum(len(s.get("items", [])) for s in sections),
            "created_by": self.created_by,
            "published_at": _iso(self.published_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_definition:
            d["sections"] = self.to_definition().to_dict()["sections"]
        return d

    def __repr__(self):
        return f"<FormTemplate {self.id}: {self.name} v{self.version} {self.status}>"


# ── Template Version Snapshot ────────────────────────────────────

class FormTemplateVersion(db.Model):
    """Immutable structure snapshot of an ACTIVE template at one version."""

    __tablename__ = "form_template_versions"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer,
        ForeignKey("form_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    version = Column(Integer, nullable=False)
    snapshot = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("template_id", "version", name="uq_form_template_version"),
    )

    def to_dict(self, include_snapshot=False):
        d = {
            "id": self.id,
            "template_id": self.template_id,
            "version": self.version,
            "created_at": _iso(self.created_at),
        }
        if include_snapshot:
            d["snapshot"] = self.snapshot
        return d


# ── Form Instance ────────────────────────────────────────────────

class FormInstance(db.Model):
    """One response set being filled against a template snapshot."""

    __tablename__ = "form_instances"

    id = Column(Integer, primary_key=True)
    template_id = Column(
        Integer,
        ForeignKey("form_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    template_version = Column(Integer, nullable=False)
    snapshot = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=INSTANCE_IN_PROGRESS)
    subject_ref = Column(String(100), nullable=True)  # client / staff / visit identifier
    responses = Column(JSON, default=dict)
    total_score = Column(Float, nullable=True)
    score_summary = Column(JSON, nullable=True)
    corrects_instance_id = Column(
        Integer,
        ForeignKey("form_instances.id", ondelete="SET NULL"),
        nullable=True,
    )
    started_by = Column(String(100), nullable=True)
    last_draft_saved_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_form_instances_template", "template_id", "status"),
        Index("ix_form_instances_subject", "subject_ref"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == INSTANCE_COMPLETED

    def to_definition(self) -> TemplateDefinition:
        """The template exactly as it was when this instance was started."""
        return TemplateDefinition.from_dict(self.snapshot or {})

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "status": self.status,
            "subject_ref": self.subject_ref,
            "responses": dict(self.responses or {}),
            "total_score": self.total_score,
            "score_summary": self.score_summary,
            "corrects_instance_id": self.corrects_instance_id,
            "started_by": self.started_by,
            "last_draft_saved_at": _iso(self.last_draft_saved_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<FormInstance {self.id}: template={self.template_id} v{self.template_version} {self.status}>"
