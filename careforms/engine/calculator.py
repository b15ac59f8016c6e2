"""
Progress & Scoring Calculator.

Pure, total functions over a template and a response set:

    progress(template, responses)          -> Progress
    section_progress(template, responses)  -> list[SectionProgress]
    score(template, responses)             -> number | None
    score_summary(template, responses)     -> ScoreSummary

"Answered" uses ``validator.is_empty`` so progress and validation never
disagree about whether an item counts. Responses keyed to ids that are not
in the template are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from careforms.engine.types import Item, Progress, ScoringMethod, TemplateDefinition
from careforms.engine.validator import is_empty


@dataclass(frozen=True)
class SectionProgress:
    section_id: str
    title: str
    answered_count: int
    total_count: int
    required_count: int
    required_answered: int

    @property
    def is_complete(self) -> bool:
        return self.required_answered == self.required_count

    def to_dict(self) -> dict:
        return {
            "section_id": self.section_id,
            "title": self.title,
            "answered_count": self.answered_count,
            "total_count": self.total_count,
            "required_count": self.required_count,
            "required_answered": self.required_answered,
            "is_complete": self.is_complete,
        }


@dataclass
class ScoreSummary:
    method: ScoringMethod
    total: float | None
    raw_sum: float | None
    max_score: float | None = None
    percentage: float | None = None
    item_scores: dict[str, float] = field(default_factory=dict)
    section_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "method": self.method.value,
            "total": self.total,
            "raw_sum": self.raw_sum,
            "max_score": self.max_score,
            "percentage": self.percentage,
            "item_scores": dict(self.item_scores),
            "section_scores": dict(self.section_scores),
        }


def progress(template: TemplateDefinition, responses: Mapping[str, Any]) -> Progress:
    answered = total = required = outstanding = 0
    for item in template.iter_items():
        total += 1
        empty = is_empty(responses.get(item.id))
        if not empty:
            answered += 1
        if item.required:
            required += 1
            if empty:
                outstanding += 1
    return Progress(
        answered_count=answered,
        total_count=total,
        required_outstanding=outstanding,
        required_count=required,
    )


def section_progress(
    template: TemplateDefinition,
    responses: Mapping[str, Any],
) -> list[SectionProgress]:
    result = []
    for section in template.ordered_sections():
        items = section.ordered_items()
        answered = {i.id for i in items if not is_empty(responses.get(i.id))}
        required = [i for i in items if i.required]
        result.append(SectionProgress(
            section_id=section.id,
            title=section.title,
            answered_count=len(answered),
            total_count=len(items),
            required_count=len(required),
            required_answered=sum(1 for i in required if i.id in answered),
        ))
    return result


def _mapping_key(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float, str)):
        return str(value)
    return None


def resolve_item_score(item: Item, value: Any) -> float | None:
    """Score contributed by ``value`` for ``item``; None when nothing resolves.

    A declared ``score_mapping`` takes precedence over option scores.
    MULTIPLE_CHOICE contributes the sum of its selected options' scores.
    """
    if is_empty(value) or not item.is_scored:
        return None
    if item.score_mapping:
        key = _mapping_key(value)
        return item.score_mapping.get(key) if key is not None else None
    if isinstance(value, str):
        option = item.find_option(value)
        return option.score if option else None
    if isinstance(value, (list, tuple)):
        scores = [
            option.score
            for option in (item.find_option(v) for v in value if isinstance(v, str))
            if option is not None and option.score is not None
        ]
        return sum(scores) if scores else None
    return None


def score(template: TemplateDefinition, responses: Mapping[str, Any]) -> float | None:
    """Sum of resolved scores over scored items.

    Returns None when no item declares scoring, which keeps "not a scored
    instrument" distinct from a zero score.
    """
    scored = [item for item in template.iter_items() if item.is_scored]
    if not scored:
        return None
    total = 0
    for item in scored:
        item_score = resolve_item_score(item, responses.get(item.id))
        if item_score is not None:
            total += item_score
    return total


def score_summary(template: TemplateDefinition, responses: Mapping[str, Any]) -> ScoreSummary:
    """Detailed scoring: per-item and per-section scores plus method adjustment."""
    item_scores: dict[str, float] = {}
    section_scores: dict[str, float] = {}
    any_scored = False

    for section in template.ordered_sections():
        section_total = None
        for item in section.ordered_items():
            if not item.is_scored:
                continue
            any_scored = True
            item_score = resolve_item_score(item, responses.get(item.id))
            if item_score is None:
                continue
            item_scores[item.id] = item_score
            section_total = (section_total or 0) + item_score
        if section_total is not None:
            section_scores[section.id] = section_total

    summary = ScoreSummary(
        method=template.scoring_method,
        total=None,
        raw_sum=None,
        max_score=template.max_score,
        item_scores=item_scores,
        section_scores=section_scores,
    )
    if not any_scored:
        return summary

    raw_sum = sum(item_scores.values())
    total = raw_sum
    if template.scoring_method == ScoringMethod.AVERAGE and item_scores:
        total = raw_sum / len(item_scores)
    summary.raw_sum = raw_sum
    summary.total = total
    if template.max_score:
        summary.percentage = round(total / template.max_score * 100, 1)
    return summary
