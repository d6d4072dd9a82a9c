"""
Shared pytest fixtures for the Project Workflow Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - templates: default ROOFING + GUTTERS templates seeded into the DB
    - make_project: factory creating projects through the service layer
"""

import pytest

from app import create_app
from app.models import db as _db
from app.services import cache_service


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
        # Ids are reused after every recreate; cached template snapshots
        # and import sessions must not leak between tests.
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def templates():
    """Seed the default templates and return their snapshots by type."""
    from app.services import template_store
    from app.services.seed_templates import seed_default_templates

    seed_default_templates()
    return {
        "ROOFING": template_store.get_template("ROOFING"),
        "GUTTERS": template_store.get_template("GUTTERS"),
    }


@pytest.fixture()
def make_project(templates):
    """Factory: create a project (and its trackers) through the service layer."""
    from app.services import project_service

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {"name": f"Project {counter['n']}", "customer_name": "Jane Doe"}
        data.update(overrides)
        return project_service.create_project(data)

    return _make
