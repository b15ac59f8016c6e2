"""
Shared pytest fixtures for the Care Forms test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - active_template: Published, enabled template built via the API
"""

import pytest

from careforms import create_app
from careforms.models import db as _db


API = "/api/v1"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def active_template(client):
    """Publish a two-section ADL-style template and return its JSON.

    Section "Mobility": SCALE 0-3 (required), YES_NO (required)
    Section "Notes":    TEXT (optional), SINGLE_CHOICE scored (required)
    """
    res = client.post(f"{API}/form-templates", json={"name": "ADL Assessment", "max_score": 10})
    assert res.status_code == 201
    tid = res.get_json()["id"]

    mobility = client.post(
        f"{API}/form-templates/{tid}/sections",
        json={"title": "Mobility", "section_type": "ADL"},
    ).get_json()
    notes = client.post(
        f"{API}/form-templates/{tid}/sections", json={"title": "Notes"},
    ).get_json()

    for section_id, body in (
        (mobility["id"], {"response_type": "SCALE", "label": "Walking"}),
        (mobility["id"], {"response_type": "YES_NO", "label": "Uses aid"}),
        (notes["id"], {"response_type": "TEXT", "label": "Comments", "required": False}),
        (notes["id"], {
            "response_type": "SINGLE_CHOICE",
            "label": "Overall",
            "options": [
                {"value": "good", "label": "Good", "score": 0},
                {"value": "poor", "label": "Poor", "score": 5},
            ],
        }),
    ):
        res = client.post(f"{API}/form-templates/{tid}/sections/{section_id}/items", json=body)
        assert res.status_code == 201

    res = client.post(f"{API}/form-templates/{tid}/publish")
    assert res.status_code == 200
    return res.get_json()
