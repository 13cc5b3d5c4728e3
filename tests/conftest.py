"""
Shared pytest fixtures for the welfare workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - catalog: the default seven-stage catalog with executive levels 1-4
    - make_user / make_case / auth_headers: factories used across modules
"""

import jwt as pyjwt
import pytest

from welfare_workflow import create_app
from welfare_workflow.models import db as _db
from welfare_workflow.models.auth import Role, User, UserRole
from welfare_workflow.models.case import Case
from welfare_workflow.models.workflow import WorkflowStage, WorkflowStageRole
from welfare_workflow.services.catalog_seed import seed_default_catalog


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


# ── Factories ────────────────────────────────────────────────────────────


_counter = {"user": 0, "case": 0}


def _make_role(name):
    role = Role.query.filter_by(name=name).first()
    if role is None:
        role = Role(name=name, display_name=name)
        _db.session.add(role)
        _db.session.flush()
    return role


def _make_user(role=None, executive_level=None, extra_roles=(), **kw):
    _counter["user"] += 1
    n = _counter["user"]
    user = User(
        email=kw.pop("email", f"user{n}@example.org"),
        full_name=kw.pop("full_name", f"User {n}"),
        role=role,
        executive_level=executive_level,
        **kw,
    )
    _db.session.add(user)
    _db.session.flush()
    for name in ([role] if role else []) + list(extra_roles):
        _db.session.add(UserRole(user_id=user.id, role_id=_make_role(name).id))
    _db.session.flush()
    return user


def _make_case(stage=None, status="draft", **kw):
    _counter["case"] += 1
    case = Case(
        case_number=kw.pop("case_number", f"WC-{_counter['case']:05d}"),
        status=status,
        current_workflow_stage_id=stage.id if stage is not None else None,
        **kw,
    )
    _db.session.add(case)
    _db.session.flush()
    return case


def _grant(stage, role_name, **fields):
    grant = WorkflowStageRole(workflow_stage_id=stage.id, role_id=_make_role(role_name).id, **fields)
    _db.session.add(grant)
    _db.session.flush()
    return grant


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def make_case():
    return _make_case


@pytest.fixture()
def grant():
    return _grant


@pytest.fixture()
def catalog():
    """Seeded default catalog keyed by stage_key."""
    seed_default_catalog()
    _db.session.flush()
    return {s.stage_key: s for s in WorkflowStage.query.all()}


@pytest.fixture()
def admin(make_user):
    return make_user(role="admin", full_name="Admin User")


@pytest.fixture()
def auth_headers(app):
    """Build Authorization headers for a user."""

    def _headers(user):
        token = pyjwt.encode({"sub": str(user.id)}, app.config["SECRET_KEY"], algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _headers
