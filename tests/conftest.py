"""
Shared pytest fixtures for the governance engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, fresh guard state (autouse)
    - client: Flask test client (function-scoped)
    - guard_state: the application's GuardState
    - admin: an active principal resolving to a global admin template
"""

import pytest

from governance_engine import create_app
from governance_engine.models import db as _db
from governance_engine.models.permission import PermissionTemplate, SecurityGroupMapping
from governance_engine.models.project import Principal
from governance_engine.services.guard_state import get_guard_state

ADMIN_EMAIL = "admin@example.com"


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
        # Rate windows and sync locks outlive a test otherwise
        get_guard_state().reset()
        yield
        get_guard_state().reset()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def guard_state():
    return get_guard_state()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin():
    """Principal with role Admin → SharePoint Admins → a global admin template.

    Reuses the seeded template/mapping when a test seeded defaults first.
    """
    template = PermissionTemplate.query.filter_by(name="SharePoint Admin").first()
    if template is None:
        template = PermissionTemplate(
            name="SharePoint Admin",
            is_global=True,
            global_access=True,
            tool_access=[
                {"tool_key": "admin_panel", "level": "ADMIN", "granular_flags": ["can_manage_templates"]},
                {"tool_key": "workflow_definitions", "level": "ADMIN", "granular_flags": []},
                {"tool_key": "leads", "level": "ADMIN", "granular_flags": []},
            ],
        )
        _db.session.add(template)
        _db.session.flush()
    if not SecurityGroupMapping.query.filter_by(security_group_name="SharePoint Admins").first():
        _db.session.add(SecurityGroupMapping(
            security_group_name="SharePoint Admins", default_template_id=template.id,
        ))
    _db.session.add(Principal(email=ADMIN_EMAIL, display_name="Admin", role_name="Admin"))
    _db.session.commit()
    return ADMIN_EMAIL


@pytest.fixture()
def admin_headers(admin):
    return {"X-User-Email": admin}
