"""
Pytest fixtures for the cash ledger tests.

Provides the app on an in-memory database, a per-test clean session, and
the reference data most tests start from (two branches, one currency,
an approver).
"""

import pytest
from cashledger import create_app
from cashledger.extensions import db
from cashledger.permissions import APPROVE_TRANSACTION, Actor
from cashledger.services import reference_data_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_LOCK_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
def idr(db_session):
    """Rupiah, 2 decimal places."""
    return reference_data_service.create_currency("IDR", "Rupiah", symbol="Rp")


@pytest.fixture(scope='function')
def usd(db_session):
    return reference_data_service.create_currency("USD", "US Dollar", symbol="$")


@pytest.fixture(scope='function')
def b01(db_session):
    """Branch B01 (head office)."""
    return reference_data_service.create_branch("B01", "Head Office")


@pytest.fixture(scope='function')
def b02(db_session):
    return reference_data_service.create_branch("B02", "Second Branch")


@pytest.fixture(scope='function')
def clerk():
    """Teller without the approval capability."""
    return Actor(id=10, name="Clerk")


@pytest.fixture(scope='function')
def approver():
    """Supervisor holding approve-transaction."""
    return Actor(id=20, name="Supervisor", permissions=frozenset({APPROVE_TRANSACTION}))
