"""
Pytest fixtures for oud-ledger backend tests.

Provides test database setup, test client, CLI runner and gift card helpers.
"""

from datetime import timedelta

import pytest
from oudledger import create_app
from oudledger.extensions import db
from oudledger.services import gift_card_service
from oudledger.services.conversion_service import get_conversion_history
from oudledger.time_utils import utcnow


STAFF_USER_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_conversion_history().clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def actor_headers():
    """Headers identifying the acting staff user."""
    return {"X-User-Id": str(STAFF_USER_ID)}


@pytest.fixture(scope='function')
def make_card(db_session):
    """Factory issuing gift cards through the service (AED 100.00 by default)."""
    def _make(amount_cents=10000, **kwargs):
        kwargs.setdefault("purchased_by_id", STAFF_USER_ID)
        return gift_card_service.issue_gift_card(amount_cents=amount_cents, **kwargs)

    return _make


@pytest.fixture(scope='function')
def expired_card(make_card):
    """ACTIVE card whose expiry passed yesterday (not yet swept)."""
    return make_card(amount_cents=5000, expires_at=utcnow() - timedelta(days=1))
