"""
Shared pytest fixtures for the caseflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant: Pre-created Tenant entity
    - journey: Pre-created five-state journey template
    - tenant_journey: The journey enabled for the default tenant
"""

import pytest

from caseflow import create_app
from caseflow.models import db as _db


def _ensure_default_tenant():
    """Create a default tenant for tests if it doesn't exist.

    Returns the tenant ID.
    """
    from caseflow.models.tenant import Tenant
    t = Tenant.query.filter_by(slug="test-default").first()
    if not t:
        t = Tenant(name="Test Default", slug="test-default")
        _db.session.add(t)
        _db.session.commit()
    return t.id


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
        _ensure_default_tenant()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    from caseflow.models.tenant import Tenant
    return Tenant.query.filter_by(slug="test-default").first()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def journey():
    """A ``sales_order`` template with the standard five states."""
    from caseflow.services.journey_service import create_journey
    j, refusal = create_journey({"key": "sales_order", "name": "Sales Order"})
    assert refusal is None
    return j


@pytest.fixture()
def tenant_journey(default_tenant, journey):
    """``journey`` enabled for the default tenant with an empty config."""
    from caseflow.services.journey_service import set_journey_enabled
    return set_journey_enabled(default_tenant.id, journey.id, True)
