"""
Pytest fixtures for back-office backend tests.

Provides test database setup, scope fixtures, and test client.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Branch, Warehouse, User
from backoffice.services.scope_service import Scope, SCOPE_BRANCH, SCOPE_WAREHOUSE


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CONCURRENCY_RETRY_BACKOFF': 0,
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
def warehouse(db_session):
    """Warehouse with an explicit invoice code."""
    record = Warehouse(name="Main Warehouse", code="WH1", is_active=True)
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture(scope='function')
def branch(db_session):
    """Branch without a code; one is derived on first invoice."""
    record = Branch(name="Downtown", is_active=True)
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture(scope='function')
def warehouse_scope(warehouse):
    return Scope(SCOPE_WAREHOUSE, warehouse.id)


@pytest.fixture(scope='function')
def branch_scope(branch):
    return Scope(SCOPE_BRANCH, branch.id)


@pytest.fixture(scope='function')
def salesperson(db_session, warehouse):
    user = User(username="ahmed", full_name="Ahmed Ali", warehouse_id=warehouse.id, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


def line(unit_price_cents: int, quantity: int = 1, unit_cost_cents: int | None = None, item_ref: str = "ITEM-1") -> dict:
    """Helper to build a sale line payload."""
    return {
        "item_ref": item_ref,
        "description": f"Item {item_ref}",
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "unit_cost_cents": unit_cost_cents,
    }
