"""
Shared pytest fixtures for the Department Workflow Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client
    - make_user / make_project: ORM factories for arbitrary starting states
    - admin, owner: pre-created users
    - auth: request headers identifying a user
"""

import pytest

from portal import create_app
from portal.models import db as _db
from portal.models.project import Project, ProjectMember
from portal.models.user import User
from portal.services.permission_service import invalidate_admin_cache
from portal.services.transitions import validator

ADMIN_EMAIL = "admin@portal.test"


# ── App & DB fixtures ────────────────────────────────────────────────────


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
        # Tables are recreated per test, so cached admin ids go stale
        invalidate_admin_cache()
        yield
        invalidate_admin_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    def _make(email, name=None):
        user = User(email=email, name=name or email.split("@")[0])
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_project():
    """Insert a project directly at any status, with optional extra members."""
    def _make(owner, department="creative", status=None, type=None,
              company_name="Acme Robotics", project_name="Series A",
              members=(), updated_at=None, **fields):
        project = Project(
            owner_id=owner.id,
            department=department,
            type=type or validator.default_type(department),
            status=status or validator.initial_status(department),
            company_name=company_name,
            project_name=project_name,
            **fields,
        )
        if updated_at is not None:
            project.updated_at = updated_at
        _db.session.add(project)
        _db.session.flush()
        _db.session.add(ProjectMember(project_id=project.id, user_id=owner.id, role="owner"))
        for user, role in members:
            _db.session.add(ProjectMember(project_id=project.id, user_id=user.id, role=role))
        _db.session.commit()
        return project
    return _make


@pytest.fixture()
def admin(make_user):
    return make_user(ADMIN_EMAIL, "Admin")


@pytest.fixture()
def owner(make_user):
    return make_user("founder@acme.test", "Founder")


@pytest.fixture()
def auth():
    def _headers(user):
        return {"X-User-Id": user.id}
    return _headers
