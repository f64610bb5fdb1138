"""
Shared pytest fixtures for the Herb Traceability test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset + fresh in-memory ledger (autouse)
    - client: Flask test client (function-scoped)
    - ledger: The ledger facade installed for the current test
    - collected_batch: QR code of a batch created through the farmer portal
"""

import pytest

from herbtrace import create_app
from herbtrace.ledger.facade import EXTENSION_KEY, LedgerFacade
from herbtrace.ledger.stores import MemoryLedgerStore
from herbtrace.middleware.timing import reset_metrics
from herbtrace.models import db as _db
from herbtrace.services.demo_seed import collection_payload


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
    """Per-test: open app context, fresh ledger, recreate tables afterwards."""
    with app.app_context():
        app.extensions[EXTENSION_KEY] = LedgerFacade(MemoryLedgerStore())
        reset_metrics()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def ledger(app):
    """The facade the current test's requests will use."""
    return app.extensions[EXTENSION_KEY]


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def collected_batch(client):
    """Create a batch via the farmer portal and return its QR code."""
    res = client.post("/api/v1/collection/events", json=collection_payload("COL-001"))
    assert res.status_code == 201
    return res.get_json()["qrCode"]
