"""
Shared pytest fixtures for the IT Governance Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_application: factory submitting an application through the service
    - auth_header: factory building a Bearer header for an employee number
"""

import json

import pytest

from it_portal import create_app
from it_portal.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
def approval_line_document():
    """Build a detail document whose approvalLine lists the given approver ids in order."""

    def _document(*approver_ids, **extra):
        roles = ["drafter", "reviewer", "head", "director", "cio", "ceo"]
        line = {roles[i]: {"id": aid, "name": f"Employee {aid}"} for i, aid in enumerate(approver_ids)}
        return json.dumps({"approvalLine": line, **extra}, ensure_ascii=False)

    return _document


@pytest.fixture()
def make_application():
    """Submit an application with the given ordered approver ids; returns its id."""
    from it_portal.services import application_service

    def _make(approver_ids, **fields):
        data = {
            "title": fields.pop("title", "New project review"),
            "requester_id": fields.pop("requester_id", "R001"),
            "requester_opinion": fields.pop("requester_opinion", "Please review"),
            "approver_ids": list(approver_ids),
        }
        data.update(fields)
        return application_service.submit(data)

    return _make


@pytest.fixture()
def auth_header():
    """Authorization header carrying a valid access token for ``employee_no``."""
    from it_portal.services.jwt_service import generate_access_token

    def _header(employee_no):
        return {"Authorization": f"Bearer {generate_access_token(employee_no)}"}

    return _header
