"""Form template engine: data model, validation, scoring, building, rendering."""

from careforms.engine.builder import TemplateBuilder, generate_item_code
from careforms.engine.calculator import (
    ScoreSummary,
    SectionProgress,
    progress,
    score,
    score_summary,
    section_progress,
)
from careforms.engine.renderer import (
    AFFORDANCES,
    Affordance,
    FormSession,
    SubmitResult,
    select_affordance,
)
from careforms.engine.types import (
    RESPONSE_TYPE_TRAITS,
    ErrorCode,
    Item,
    Progress,
    ResponseOption,
    ResponseType,
    ScoringMethod,
    Section,
    TemplateCategory,
    TemplateDefinition,
    TemplateStatus,
    ValidationResult,
)
from careforms.engine.validator import is_empty, validate, validate_item, validate_responses

__all__ = [
    "AFFORDANCES",
    "Affordance",
    "ErrorCode",
    "FormSession",
    "Item",
    "Progress",
    "RESPONSE_TYPE_TRAITS",
    "ResponseOption",
    "ResponseType",
    "ScoreSummary",
    "ScoringMethod",
    "Section",
    "SectionProgress",
    "SubmitResult",
    "TemplateBuilder",
    "TemplateCategory",
    "TemplateDefinition",
    "TemplateStatus",
    "ValidationResult",
    "generate_item_code",
    "is_empty",
    "progress",
    "score",
    "score_summary",
    "section_progress",
    "select_affordance",
    "validate",
    "validate_item",
    "validate_responses",
]
