"""
Shared pytest fixtures for the docflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clock / membership / hook: injectable engine collaborators
    - wf: WorkflowEngine built from them and installed on the app (autouse)
    - make_template: factory that persists a template through the catalog
"""

import itertools

import pytest

from docflow import create_app
from docflow.core.clock import FrozenClock
from docflow.core.roles import Role
from docflow.models import db as _db
from docflow.services import template_catalog
from docflow.services.approver_resolver import StaticRoleMembership
from docflow.services.engine import EXTENSION_KEY, WorkflowEngine
from docflow.services.notification import InAppNotificationHook


class RecordingHook(InAppNotificationHook):
    """Writes the in-app outbox like production and remembers every event."""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)
        super().emit(event)

    def of_type(self, event_type):
        return [e for e in self.events if e.event_type == event_type]


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def clock():
    """Frozen at 2026-01-05 09:00 UTC; advance() to move time."""
    return FrozenClock()


@pytest.fixture()
def membership():
    """Two managers and one admin; nobody holds USER."""
    return StaticRoleMembership({
        Role.MANAGER: {"mia", "max"},
        Role.ADMIN: {"root"},
    })


@pytest.fixture()
def hook():
    return RecordingHook()


@pytest.fixture(autouse=True)
def wf(app, session, clock, membership, hook):
    """Install a deterministic engine for the duration of one test."""
    previous = app.extensions.get(EXTENSION_KEY)
    engine = WorkflowEngine.build(clock=clock, membership=membership, hook=hook)
    app.extensions[EXTENSION_KEY] = engine
    yield engine
    app.extensions[EXTENSION_KEY] = previous


@pytest.fixture()
def make_template():
    """Factory: make_template({"name": "Legal", "roles": ["MANAGER"]}, ..., default_sla_hours=48)."""
    counter = itertools.count(1)

    def _make(*steps, name=None, **fields):
        data = {
            "name": name or f"Template {next(counter)}",
            "steps": list(steps) or [{"name": "Review", "approvers": ["alice"]}],
        }
        data.update(fields)
        return template_catalog.create_template(data, created_by="author")

    return _make
