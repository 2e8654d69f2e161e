"""
Pytest fixtures for the voucher settlement backend tests.

Provides test database setup, a seeded retailer/terminal/voucher world, and
the test client.
"""

import pytest
from voucherpos import create_app
from voucherpos.extensions import db
from voucherpos.services.bill_payment_service import VENDOR_REGISTRY_KEY

from factories import seed_world


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BILL_PAYMENT_VENDORS': {},
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
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def vendors(app):
    """Bill payment vendor registry, emptied after each test."""
    registry = app.extensions.setdefault(VENDOR_REGISTRY_KEY, {})
    registry.clear()
    yield registry
    registry.clear()


@pytest.fixture(scope='function')
def world(db_session):
    return seed_world(db_session)
