"""
Pytest fixtures for StockSync backend tests.

Provides the application on an in-memory local store, a fresh coordinator
backed by an InMemoryRemoteLedger per test, and the test client.
"""

import pytest

from stocksync import create_app
from stocksync.extensions import db
from stocksync.models import AppState
from stocksync.services.coordinator import init_coordinator
from stocksync.services.local_store import LocalStore
from stocksync.services.remote_ledger import InMemoryRemoteLedger


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REMOTE_LEDGER_URL': '',
        'START_ONLINE': True,
        'IMPORT_RECONCILES_STOCK': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def remote():
    return InMemoryRemoteLedger()


@pytest.fixture(scope='function')
def coordinator(app, remote):
    """Fresh local store and coordinator for each test."""
    store = LocalStore()
    store.clear()
    coordinator = init_coordinator(app, remote)
    coordinator.initialize()
    yield coordinator
    coordinator.change_feed.detach()
    db.session.rollback()


@pytest.fixture(scope='function')
def client(app, coordinator):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def state():
    """Bare application state for mutator tests (no Flask, no storage)."""
    return AppState()

