"""
Progress & scoring calculator — unit tests.
"""

import pytest

from careforms.engine.calculator import (
    progress,
    resolve_item_score,
    score,
    score_summary,
    section_progress,
)
from careforms.engine.types import (
    Item,
    ResponseOption,
    ResponseType,
    ScoringMethod,
    Section,
    TemplateDefinition,
)


def _unscored_template():
    return TemplateDefinition(name="Visit note", sections=[
        Section(id="s1", title="Visit", items=[
            Item(id="a", label="Arrived", response_type=ResponseType.YES_NO, required=True, order=0),
            Item(id="b", label="Notes", response_type=ResponseType.TEXT, order=1),
            Item(id="c", label="Tasks", response_type=ResponseType.MULTIPLE_CHOICE, required=True,
                 order=2, options=[ResponseOption("meds", "Meds"), ResponseOption("meal", "Meal")]),
        ]),
    ])


def _scored_template(**kwargs):
    return TemplateDefinition(name="ADL", sections=[
        Section(id="s1", title="Mobility", order=0, items=[
            Item(id="walk", label="Walking", response_type=ResponseType.SCALE, order=0,
                 min_value=0, max_value=3, score_mapping={"0": 0, "1": 1, "2": 2, "3": 4}),
            Item(id="aid", label="Uses aid", response_type=ResponseType.YES_NO, order=1),
        ]),
        Section(id="s2", title="Overall", order=1, items=[
            Item(id="overall", label="Overall", response_type=ResponseType.SINGLE_CHOICE, order=0,
                 options=[ResponseOption("good", "Good", 0), ResponseOption("poor", "Poor", 5)]),
            Item(id="risks", label="Risks", response_type=ResponseType.MULTIPLE_CHOICE, order=1,
                 options=[ResponseOption("falls", "Falls", 2), ResponseOption("skin", "Skin", 3),
                          ResponseOption("other", "Other")]),
        ]),
    ], **kwargs)


class TestProgress:
    def test_empty_responses(self):
        p = progress(_unscored_template(), {})
        assert (p.answered_count, p.total_count, p.required_outstanding) == (0, 3, 2)
        assert p.percent == 0.0
        assert p.is_complete is False

    def test_false_counts_as_answered(self):
        p = progress(_unscored_template(), {"a": False})
        assert p.answered_count == 1
        assert p.required_outstanding == 1

    def test_empty_list_and_string_not_answered(self):
        p = progress(_unscored_template(), {"b": "", "c": []})
        assert p.answered_count == 0

    def test_complete(self):
        p = progress(_unscored_template(), {"a": True, "c": ["meds"]})
        assert p.is_complete is True
        assert p.required_count == 2
        assert p.percent == pytest.approx(66.7)

    @pytest.mark.parametrize("item_id, value", [("a", True), ("b", "x"), ("c", ["meal"])])
    def test_answering_increases_answered_only(self, item_id, value):
        tpl = _unscored_template()
        before = progress(tpl, {})
        after = progress(tpl, {item_id: value})
        assert after.answered_count == before.answered_count + 1
        assert after.total_count == before.total_count

    def test_orphans_ignored(self):
        p = progress(_unscored_template(), {"zzz": True})
        assert p.answered_count == 0

    def test_empty_template(self):
        p = progress(TemplateDefinition(name="Empty"), {})
        assert (p.answered_count, p.total_count, p.required_outstanding) == (0, 0, 0)
        assert p.percent == 0.0

    def test_section_progress(self):
        result = section_progress(_scored_template(), {"walk": 2, "risks": ["falls"]})
        assert [s.section_id for s in result] == ["s1", "s2"]
        assert result[0].answered_count == 1
        assert result[0].total_count == 2
        assert result[1].to_dict()["answered_count"] == 1


class TestScore:
    def test_unscored_template_is_none(self):
        assert score(_unscored_template(), {"a": True, "c": ["meds"]}) is None

    def test_single_option_score(self):
        tpl = TemplateDefinition(name="T", sections=[Section(id="s", title="S", items=[
            Item(id="q", label="Q", response_type=ResponseType.SINGLE_CHOICE, order=0,
                 options=[ResponseOption("x", "X", 5), ResponseOption("y", "Y", 1)]),
            Item(id="n", label="N", response_type=ResponseType.TEXT, order=1),
            Item(id="b", label="B", response_type=ResponseType.YES_NO, order=2),
        ])])
        assert score(tpl, {"q": "x"}) == 5
        assert score(tpl, {"q": "x", "n": "hello", "b": True}) == 5

    def test_scored_but_unanswered_is_zero(self):
        assert score(_scored_template(), {}) == 0

    def test_scale_mapping_and_options(self):
        responses = {"walk": 3, "overall": "poor", "risks": ["falls", "skin"]}
        assert score(_scored_template(), responses) == 4 + 5 + 5

    def test_scale_mapping_accepts_integral_float(self):
        assert score(_scored_template(), {"walk": 3.0}) == 4

    def test_unscored_option_contributes_nothing(self):
        assert score(_scored_template(), {"risks": ["other"]}) == 0

    def test_resolve_item_score(self):
        tpl = _scored_template()
        _, walk = tpl.find_item("walk")
        _, risks = tpl.find_item("risks")
        _, aid = tpl.find_item("aid")
        assert resolve_item_score(walk, 2) == 2
        assert resolve_item_score(walk, None) is None
        assert resolve_item_score(risks, ["skin", "other"]) == 3
        assert resolve_item_score(aid, True) is None


class TestScoreSummary:
    def test_sum_with_percentage(self):
        summary = score_summary(_scored_template(max_score=20), {"walk": 2, "overall": "poor"})
        assert summary.method == ScoringMethod.SUM
        assert summary.total == 7
        assert summary.item_scores == {"walk": 2, "overall": 5}
        assert summary.section_scores == {"s1": 2, "s2": 5}
        assert summary.percentage == 35.0

    def test_average(self):
        tpl = _scored_template(scoring_method=ScoringMethod.AVERAGE)
        summary = score_summary(tpl, {"walk": 2, "overall": "poor"})
        assert summary.raw_sum == 7
        assert summary.total == pytest.approx(3.5)

    def test_unscored_template(self):
        summary = score_summary(_unscored_template(), {"a": True})
        assert summary.total is None
        assert summary.to_dict()["item_scores"] == {}
