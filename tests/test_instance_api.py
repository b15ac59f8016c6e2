"""
Form instance API — start, draft-save, submit, corrections, progress.

Uses the published ``active_template`` fixture from conftest:
    Mobility: Walking (SCALE 0-3, required), Uses aid (YES_NO, required)
    Notes:    Comments (TEXT, optional), Overall (SINGLE_CHOICE good=0/poor=5, required)
"""

import pytest

from careforms.core.exceptions import FormStateError, HandoffInProgressError
from careforms.services import instance_service

API = "/api/v1"


def _post(client, url, data=None):
    return client.post(API + url, json=data or {})


def _get(client, url):
    return client.get(API + url)


def _put(client, url, data=None):
    return client.put(API + url, json=data or {})


def _items(template):
    """Label -> item id for the fixture template."""
    return {i["label"]: i["id"] for s in template["sections"] for i in s["items"]}


@pytest.fixture()
def ids(active_template):
    return _items(active_template)


@pytest.fixture()
def instance(client, active_template):
    res = _post(client, "/form-instances", {"template_id": active_template["id"], "subject_ref": "client-17"})
    assert res.status_code == 201
    return res.get_json()


def _complete_answers(ids):
    return {ids["Walking"]: 2, ids["Uses aid"]: True, ids["Overall"]: "poor"}


# ═══════════════════════════════════════════════════════════════
#  Start & view
# ═══════════════════════════════════════════════════════════════


class TestStart:
    def test_start(self, instance, active_template):
        assert instance["status"] == "IN_PROGRESS"
        assert instance["template_id"] == active_template["id"]
        assert instance["template_version"] == 1
        assert instance["responses"] == {}
        assert instance["subject_ref"] == "client-17"

    def test_template_id_required(self, client):
        res = _post(client, "/form-instances", {})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_template(self, client):
        assert _post(client, "/form-instances", {"template_id": 999}).status_code == 404

    def test_draft_template_cannot_be_started(self, client):
        tid = _post(client, "/form-templates", {"name": "Unpublished"}).get_json()["id"]
        res = _post(client, "/form-instances", {"template_id": tid})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_disabled_template_cannot_be_started(self, client, active_template):
        _post(client, f"/form-templates/{active_template['id']}/disable")
        res = _post(client, "/form-instances", {"template_id": active_template["id"]})
        assert res.status_code == 409

    def test_view_renders_affordances(self, client, instance):
        res = _get(client, f"/form-instances/{instance['id']}")
        assert res.status_code == 200
        data = res.get_json()
        assert data["template"]["name"] == "ADL Assessment"
        assert [s["title"] for s in data["sections"]] == ["Mobility", "Notes"]
        affordances = [i["affordance"] for s in data["sections"] for i in s["items"]]
        assert affordances == ["button_set", "toggle_pair", "text_input", "single_select_chips"]
        assert data["progress"]["total_count"] == 4
        assert data["progress"]["answered_count"] == 0

    def test_list_filters(self, client, instance, active_template):
        _post(client, "/form-instances", {"template_id": active_template["id"], "subject_ref": "client-18"})
        res = _get(client, "/form-instances?subject_ref=client-17")
        assert [i["id"] for i in res.get_json()["items"]] == [instance["id"]]
        res = _get(client, "/form-instances?status=completed")
        assert res.get_json()["items"] == []

    def test_list_rejects_unknown_status(self, client):
        assert _get(client, "/form-instances?status=ARCHIVED").status_code == 422

    def test_view_404(self, client):
        assert _get(client, "/form-instances/404").status_code == 404


# ═══════════════════════════════════════════════════════════════
#  Draft & submit
# ═══════════════════════════════════════════════════════════════


class TestDraft:
    def test_draft_saves_without_validation(self, client, instance, ids):
        res = _put(client, f"/form-instances/{instance['id']}/draft",
                   {"responses": {ids["Walking"]: 9, ids["Uses aid"]: "maybe"}})
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "IN_PROGRESS"
        assert data["responses"] == {ids["Walking"]: 9, ids["Uses aid"]: "maybe"}
        assert data["last_draft_saved_at"] is not None

    def test_drafts_merge(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}/draft"
        _put(client, url, {"responses": {ids["Walking"]: 1}})
        data = _put(client, url, {"responses": {ids["Comments"]: "Steady today"}}).get_json()
        assert data["responses"] == {ids["Walking"]: 1, ids["Comments"]: "Steady today"}

    def test_responses_must_be_object(self, client, instance):
        res = _put(client, f"/form-instances/{instance['id']}/draft", {"responses": ["x"]})
        assert res.status_code == 422

    def test_orphan_keys_are_kept(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        answers = dict(_complete_answers(ids), retired_item=3)
        _put(client, url + "/draft", {"responses": answers})
        res = _post(client, url + "/submit")
        assert res.status_code == 200
        assert res.get_json()["responses"]["retired_item"] == 3

    def test_busy_instance_rejects_draft(self, client, instance, ids):
        lock = instance_service.handoff_lock(instance["id"])
        lock.acquire()
        try:
            with pytest.raises(HandoffInProgressError):
                instance_service.save_draft(instance["id"], {"responses": {ids["Walking"]: 1}})
            res = _put(client, f"/form-instances/{instance['id']}/draft",
                       {"responses": {ids["Walking"]: 1}})
            assert res.status_code == 409
            assert res.get_json()["code"] == "ERR_CONFLICT_BUSY"
        finally:
            lock.release()
        assert _put(client, f"/form-instances/{instance['id']}/draft",
                    {"responses": {ids["Walking"]: 1}}).status_code == 200


class TestSubmit:
    def test_empty_submit_reports_every_error(self, client, instance, ids):
        res = _post(client, f"/form-instances/{instance['id']}/submit")
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_SUBMISSION_INVALID"
        details = body["details"]
        assert details["submitted"] is False
        assert set(details["errors"]) == {ids["Walking"], ids["Uses aid"], ids["Overall"]}
        assert details["errors"][ids["Walking"]]["error"] == "MissingRequiredValue"
        assert details["first_error_item_id"] == ids["Walking"]

    def test_failed_submit_persists_nothing(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        _post(client, url + "/submit", {"responses": {ids["Walking"]: 7}})
        data = _get(client, url).get_json()["instance"]
        assert data["status"] == "IN_PROGRESS"
        assert data["responses"] == {}

    def test_out_of_range_and_option_errors(self, client, instance, ids):
        res = _post(client, f"/form-instances/{instance['id']}/submit", {"responses": {
            ids["Walking"]: 7, ids["Uses aid"]: True, ids["Overall"]: "excellent",
        }})
        errors = res.get_json()["details"]["errors"]
        assert errors[ids["Walking"]]["error"] == "OutOfRange"
        assert errors[ids["Overall"]]["error"] == "InvalidOption"
        assert ids["Uses aid"] not in errors

    def test_submit_completes_with_score(self, client, instance, ids):
        res = _post(client, f"/form-instances/{instance['id']}/submit",
                    {"responses": _complete_answers(ids)})
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "COMPLETED"
        assert data["completed_at"] is not None
        assert data["total_score"] == 7
        assert data["score_summary"]["percentage"] == 70.0
        assert data["score_summary"]["item_scores"] == {ids["Walking"]: 2, ids["Overall"]: 5}

    def test_draft_then_submit(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        _put(client, url + "/draft", {"responses": {ids["Walking"]: 0, ids["Uses aid"]: False}})
        assert _post(client, url + "/submit").status_code == 422
        res = _post(client, url + "/submit", {"responses": {ids["Overall"]: "good"}})
        assert res.status_code == 200
        assert res.get_json()["total_score"] == 0

    def test_completed_instance_is_frozen(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        _post(client, url + "/submit", {"responses": _complete_answers(ids)})
        res = _put(client, url + "/draft", {"responses": {ids["Walking"]: 0}})
        assert res.status_code == 409
        assert res.get_json()["details"]["current_state"] == "COMPLETED"
        assert _post(client, url + "/submit").status_code == 409

    def test_snapshot_survives_template_edits(self, client, instance, active_template, ids):
        tid = active_template["id"]
        notes_id = active_template["sections"][1]["id"]
        _post(client, f"/form-templates/{tid}/sections/{notes_id}/items",
              {"response_type": "DATE", "label": "Next review"})
        assert _get(client, f"/form-templates/{tid}").get_json()["version"] == 2

        view = _get(client, f"/form-instances/{instance['id']}").get_json()
        assert view["progress"]["total_count"] == 4
        res = _post(client, f"/form-instances/{instance['id']}/submit",
                    {"responses": _complete_answers(ids)})
        assert res.status_code == 200
        assert res.get_json()["template_version"] == 1

        fresh = _post(client, "/form-instances", {"template_id": tid}).get_json()
        assert fresh["template_version"] == 2

    def test_handoff_after_concurrent_submit_is_rejected(self, client, instance, ids):
        row = instance_service.get_instance(instance["id"])
        late_draft = instance_service._open_session(row, {ids["Walking"]: 1})
        late_submit = instance_service._open_session(row, {**_complete_answers(ids), ids["Overall"]: "good"})

        instance_service.submit_instance(instance["id"], {"responses": _complete_answers(ids)})

        with pytest.raises(FormStateError):
            late_draft.save_draft()
        with pytest.raises(FormStateError):
            late_submit.submit()
        data = _get(client, f"/form-instances/{instance['id']}").get_json()["instance"]
        assert data["status"] == "COMPLETED"
        assert data["responses"] == _complete_answers(ids)
        assert data["total_score"] == 7

    def test_submit_drops_handoff_lock(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        _put(client, url + "/draft", {"responses": {ids["Walking"]: 1}})
        assert _post(client, url + "/submit", {"responses": _complete_answers(ids)}).status_code == 200
        assert instance["id"] not in instance_service._handoff_locks

    def test_started_template_cannot_be_deleted(self, client, instance, active_template):
        res = client.delete(f"{API}/form-templates/{active_template['id']}")
        assert res.status_code == 409


# ═══════════════════════════════════════════════════════════════
#  Corrections & progress
# ═══════════════════════════════════════════════════════════════


class TestCorrections:
    def test_correction_prefills_from_completed(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        _post(client, url + "/submit", {"responses": _complete_answers(ids)})
        res = _post(client, url + "/corrections")
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "IN_PROGRESS"
        assert data["corrects_instance_id"] == instance["id"]
        assert data["responses"] == _complete_answers(ids)
        assert data["subject_ref"] == "client-17"

        original = _get(client, url).get_json()["instance"]
        assert original["status"] == "COMPLETED"
        assert original["total_score"] == 7

    def test_in_progress_cannot_be_corrected(self, client, instance):
        res = _post(client, f"/form-instances/{instance['id']}/corrections")
        assert res.status_code == 409


class TestProgress:
    def test_progress_and_score(self, client, instance, ids):
        url = f"/form-instances/{instance['id']}"
        _put(client, url + "/draft", {"responses": {ids["Walking"]: 3, ids["Comments"]: ""}})
        data = _get(client, url + "/progress").get_json()
        assert data["progress"]["answered_count"] == 1
        assert data["progress"]["required_outstanding"] == 2
        assert [s["answered_count"] for s in data["sections"]] == [1, 0]
        assert data["score"] == 3
        assert data["score_summary"]["method"] == "SUM"
