"""
Form template API — blueprint + service tests.
"""

import pytest

from careforms.models.forms import FormTemplateVersion

API = "/api/v1"


def _post(client, url, data=None):
    return client.post(API + url, json=data or {})


def _get(client, url):
    return client.get(API + url)


def _put(client, url, data=None):
    return client.put(API + url, json=data or {})


def _delete(client, url):
    return client.delete(API + url)


# ── fixtures ──

@pytest.fixture()
def template(client):
    res = _post(client, "/form-templates", {"name": "Home Safety", "category": "VISIT_NOTE"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def section(client, template):
    res = _post(client, f"/form-templates/{template['id']}/sections",
                {"title": "Environment", "section_type": "HOME_SAFETY"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def item(client, template, section):
    res = _post(client, f"/form-templates/{template['id']}/sections/{section['id']}/items",
                {"response_type": "YES_NO", "label": "Smoke alarm fitted"})
    assert res.status_code == 201
    return res.get_json()


def _sections(client, tid):
    return _get(client, f"/form-templates/{tid}").get_json()["sections"]


# ═══════════════════════════════════════════════════════════════
#  Templates
# ═══════════════════════════════════════════════════════════════


class TestTemplateCrud:
    def test_create_defaults(self, template):
        assert template["status"] == "DRAFT"
        assert template["version"] == 1
        assert template["is_enabled"] is False
        assert template["category"] == "VISIT_NOTE"
        assert template["sections"] == []

    def test_create_requires_name(self, client):
        res = _post(client, "/form-templates", {"category": "ASSESSMENT"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_unknown_category(self, client):
        res = _post(client, "/form-templates", {"name": "X", "category": "PAYROLL"})
        assert res.status_code == 422

    def test_get_404(self, client):
        res = _get(client, "/form-templates/9999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_filters(self, client, template):
        _post(client, "/form-templates", {"name": "Client profile", "category": "CLIENT_PROFILE"})
        res = _get(client, "/form-templates?category=visit_note")
        data = res.get_json()
        assert res.status_code == 200
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Home Safety"
        assert "sections" not in data["items"][0]

        res = _get(client, "/form-templates?search=profile")
        assert [t["name"] for t in res.get_json()["items"]] == ["Client profile"]

        res = _get(client, "/form-templates?is_enabled=false&limit=1")
        assert len(res.get_json()["items"]) == 1
        assert res.get_json()["total"] == 2

    def test_update_details(self, client, template):
        res = _put(client, f"/form-templates/{template['id']}",
                   {"name": "Home Safety Check", "scoring_method": "AVERAGE", "max_score": 10})
        assert res.status_code == 200
        data = res.get_json()
        assert data["name"] == "Home Safety Check"
        assert data["scoring_method"] == "AVERAGE"
        assert data["max_score"] == 10

    def test_update_rejects_unknown_fields(self, client, template):
        res = _put(client, f"/form-templates/{template['id']}", {"owner": "me"})
        assert res.status_code == 422

    def test_delete_draft(self, client, template):
        assert _delete(client, f"/form-templates/{template['id']}").status_code == 200
        assert _get(client, f"/form-templates/{template['id']}").status_code == 404

    def test_response_type_catalog(self, client):
        res = _get(client, "/form-templates/response-types")
        items = {t["value"]: t for t in res.get_json()["items"]}
        assert len(items) == 7
        assert items["YES_NO"]["affordance"] == "toggle_pair"
        assert items["SINGLE_CHOICE"]["uses_options"] is True


class TestStructure:
    def test_add_section_and_item(self, client, template, section, item):
        sections = _sections(client, template["id"])
        assert len(sections) == 1
        assert sections[0]["items"][0]["code"] == "HOMESAFETY_Q1"
        assert item["response_type"] == "YES_NO"
        assert item["required"] is True

    def test_add_item_requires_type(self, client, template, section):
        res = _post(client, f"/form-templates/{template['id']}/sections/{section['id']}/items",
                    {"label": "No type"})
        assert res.status_code == 422

    def test_add_item_unknown_type(self, client, template, section):
        res = _post(client, f"/form-templates/{template['id']}/sections/{section['id']}/items",
                    {"response_type": "SIGNATURE"})
        assert res.status_code == 400
        assert "SIGNATURE" in res.get_json()["error"]

    def test_add_item_unknown_section(self, client, template):
        res = _post(client, f"/form-templates/{template['id']}/sections/sec_nope/items",
                    {"response_type": "TEXT"})
        assert res.status_code == 404

    def test_add_item_with_constraints(self, client, template, section):
        res = _post(client, f"/form-templates/{template['id']}/sections/{section['id']}/items", {
            "response_type": "NUMBER",
            "label": "Room temperature",
            "min_value": 10,
            "max_value": 35,
            "unit": "C",
        })
        data = res.get_json()
        assert (data["min_value"], data["max_value"], data["unit"]) == (10, 35, "C")

    def test_option_scores_must_be_numbers(self, client, template, section):
        res = _post(client, f"/form-templates/{template['id']}/sections/{section['id']}/items", {
            "response_type": "SINGLE_CHOICE",
            "label": "Trip hazards",
            "options": [{"value": "a", "label": "A", "score": "5"}],
        })
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert _sections(client, template["id"])[0]["items"] == []

    def test_fractional_scale_bounds_rejected(self, client, template, section):
        res = _post(client, f"/form-templates/{template['id']}/sections/{section['id']}/items",
                    {"response_type": "SCALE", "label": "Lighting", "min_value": 0.5, "max_value": 3})
        assert res.status_code == 422

    def test_update_item(self, client, template, item):
        res = _put(client, f"/form-templates/{template['id']}/items/{item['id']}",
                   {"label": "Working smoke alarm", "required": False})
        assert res.status_code == 200
        assert res.get_json()["label"] == "Working smoke alarm"
        assert res.get_json()["required"] is False

    def test_reorder_and_remove_sections(self, client, template, section):
        tid = template["id"]
        other = _post(client, f"/form-templates/{tid}/sections", {"title": "Kitchen"}).get_json()
        res = _post(client, f"/form-templates/{tid}/sections/reorder",
                    {"section_ids": [other["id"], section["id"]]})
        assert res.status_code == 200
        assert [(s["title"], s["order"]) for s in _sections(client, tid)] == [("Kitchen", 0), ("Environment", 1)]

        assert _delete(client, f"/form-templates/{tid}/sections/{other['id']}").status_code == 200
        assert [(s["title"], s["order"]) for s in _sections(client, tid)] == [("Environment", 0)]

    def test_reorder_requires_every_id(self, client, template, section):
        res = _post(client, f"/form-templates/{template['id']}/sections/reorder", {"section_ids": []})
        assert res.status_code == 422

    def test_reorder_items_and_move(self, client, template, section, item):
        tid = template["id"]
        second = _post(client, f"/form-templates/{tid}/sections/{section['id']}/items",
                       {"response_type": "TEXT", "label": "Hazards"}).get_json()
        res = _post(client, f"/form-templates/{tid}/sections/{section['id']}/items/reorder",
                    {"item_ids": [second["id"], item["id"]]})
        assert [i["id"] for i in res.get_json()["items"]] == [second["id"], item["id"]]

        kitchen = _post(client, f"/form-templates/{tid}/sections", {"title": "Kitchen"}).get_json()
        res = _post(client, f"/form-templates/{tid}/items/{second['id']}/move",
                    {"section_id": kitchen["id"]})
        assert res.status_code == 200
        sections = _sections(client, tid)
        assert [i["id"] for i in sections[0]["items"]] == [item["id"]]
        assert [i["id"] for i in sections[1]["items"]] == [second["id"]]

    def test_remove_item(self, client, template, section, item):
        assert _delete(client, f"/form-templates/{template['id']}/items/{item['id']}").status_code == 200
        assert _sections(client, template["id"])[0]["items"] == []
        assert _delete(client, f"/form-templates/{template['id']}/items/{item['id']}").status_code == 404


class TestLifecycle:
    def test_publish(self, client, template, item):
        res = _post(client, f"/form-templates/{template['id']}/publish")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ACTIVE"
        assert data["is_enabled"] is True
        assert data["published_at"] is not None
        versions = _get(client, f"/form-templates/{template['id']}/versions").get_json()["items"]
        assert [v["version"] for v in versions] == [1]

    def test_publish_empty_template_lists_problems(self, client, template):
        res = _post(client, f"/form-templates/{template['id']}/publish")
        assert res.status_code == 422
        assert res.get_json()["details"]["problems"]

    def test_publish_twice(self, client, template, item):
        _post(client, f"/form-templates/{template['id']}/publish")
        res = _post(client, f"/form-templates/{template['id']}/publish")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_no_unpublish(self, client, template, item):
        _post(client, f"/form-templates/{template['id']}/publish")
        res = _put(client, f"/form-templates/{template['id']}", {"status": "DRAFT"})
        assert res.status_code == 409

    def test_enable_disable(self, client, template, item):
        tid = template["id"]
        _post(client, f"/form-templates/{tid}/publish")
        res = _post(client, f"/form-templates/{tid}/disable")
        assert res.get_json()["is_enabled"] is False
        assert res.get_json()["status"] == "ACTIVE"
        res = _post(client, f"/form-templates/{tid}/enable")
        assert res.get_json()["is_enabled"] is True

    def test_active_template_cannot_be_deleted(self, client, template, item):
        _post(client, f"/form-templates/{template['id']}/publish")
        assert _delete(client, f"/form-templates/{template['id']}").status_code == 409

    def test_structural_edit_on_active_bumps_version(self, client, template, section, item):
        tid = template["id"]
        _post(client, f"/form-templates/{tid}/publish")
        _put(client, f"/form-templates/{tid}/items/{item['id']}", {"label": "Relabelled"})
        assert _get(client, f"/form-templates/{tid}").get_json()["version"] == 1

        _post(client, f"/form-templates/{tid}/sections/{section['id']}/items",
              {"response_type": "TEXT", "label": "Notes"})
        assert _get(client, f"/form-templates/{tid}").get_json()["version"] == 2

        versions = _get(client, f"/form-templates/{tid}/versions").get_json()["items"]
        assert [v["version"] for v in versions] == [1, 2]
        v1 = _get(client, f"/form-templates/{tid}/versions/1").get_json()["snapshot"]
        assert len(v1["sections"][0]["items"]) == 1
        assert FormTemplateVersion.query.filter_by(template_id=tid).count() == 2

    def test_requiredness_edit_on_active_keeps_old_snapshot(self, client, active_template):
        tid = active_template["id"]
        comments = next(i for s in active_template["sections"] for i in s["items"] if i["label"] == "Comments")
        res = _put(client, f"/form-templates/{tid}/items/{comments['id']}", {"required": True})
        assert res.status_code == 200
        assert _get(client, f"/form-templates/{tid}").get_json()["version"] == 2

        versions = _get(client, f"/form-templates/{tid}/versions").get_json()["items"]
        assert [v["version"] for v in versions] == [1, 2]

        def _required(version):
            snapshot = _get(client, f"/form-templates/{tid}/versions/{version}").get_json()["snapshot"]
            return next(i["required"] for s in snapshot["sections"] for i in s["items"] if i["id"] == comments["id"])

        assert _required(1) is False
        assert _required(2) is True

    def test_unknown_version(self, client, template):
        assert _get(client, f"/form-templates/{template['id']}/versions/3").status_code == 404


class TestHealthAndHeaders:
    def test_ready(self, client):
        res = _get(client, "/health/ready")
        assert res.status_code == 200
        assert "MULTIPLE_CHOICE" in res.get_json()["response_types"]

    def test_live_checks_database(self, client):
        res = _get(client, "/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_request_id_echoed(self, client):
        res = client.get(API + "/form-templates", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_unknown_route_uses_envelope(self, client):
        res = _get(client, "/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_non_json_body_rejected(self, client):
        res = client.post(API + "/form-templates", data="name=x", content_type="text/plain")
        assert res.status_code == 415
