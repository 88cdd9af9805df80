"""
Shared pytest fixtures for the Deal Diligence Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - taxonomy: freshly loaded, database-backed TaxonomyStore
    - user / deal / undated_deal: pre-created entities
    - make_user / make_deal / make_template: ORM factories
"""

from datetime import date

import pytest

from diligence import create_app
from diligence.models import db as _db
from diligence.models.deal import Deal
from diligence.models.template import TaskTemplate, TaskTemplateItem
from diligence.models.user import User
from diligence.services.taxonomy_service import get_taxonomy_store


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


# ── ORM helpers ──────────────────────────────────────────────────────────


def _make_user(username="alice", name="Alice Analyst", role="functional_lead") -> User:
    u = User(username=username, name=name, role=role)
    _db.session.add(u)
    _db.session.commit()
    return u


def _make_deal(name="Project Falcon", start_date=None) -> Deal:
    d = Deal(name=name, start_date=start_date)
    _db.session.add(d)
    _db.session.commit()
    return d


def _make_template(name="Standard DD", items=(), is_default=False) -> TaskTemplate:
    """Create a template directly through the ORM.

    ``items`` is a sequence of dicts with TaskTemplateItem columns; phase /
    category default to built-ins and bypass taxonomy validation.
    """
    t = TaskTemplate(name=name, is_default=is_default)
    for overrides in items:
        fields = {"phase": "loi_signing", "category": "legal", "days_from_start": 0}
        fields.update(overrides)
        t.items.append(TaskTemplateItem(**fields))
    _db.session.add(t)
    _db.session.commit()
    return t


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def taxonomy():
    return get_taxonomy_store()


@pytest.fixture()
def user():
    return _make_user()


@pytest.fixture()
def deal():
    return _make_deal(start_date=date(2024, 1, 1))


@pytest.fixture()
def undated_deal():
    return _make_deal(name="Project Heron", start_date=None)


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def make_deal():
    return _make_deal


@pytest.fixture()
def make_template():
    return _make_template
