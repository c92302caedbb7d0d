"""
Pytest fixtures for ShopLedger backend tests.

Provides test database setup, item/customer/supplier factories and test client.
"""

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.services import credit_service, inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'IDENTIFIER_LOCK_TIMEOUT_SECONDS': 2,
        'LOYALTY_POINTS_PER_SALE': 10,
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
def make_item(db_session):
    """Factory: make_item(name, qty=10, cost=5000, price=10000, reorder=2, kind='STOCK')."""
    def _make(name="Cement 50kg", qty=10, cost=5000, price=10000, reorder=2, kind="STOCK"):
        payload = {
            "name": name,
            "kind": kind,
            "cost_price_cents": cost,
            "selling_price_cents": price,
            "reorder_level": reorder,
        }
        if qty:
            payload["opening_quantity"] = qty
        return inventory_service.create_item(payload, actor="tester")
    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    """Registered customer with a zero balance."""
    return credit_service.create_customer({"name": "Amina Otieno", "phone": "0712000000"}, actor="tester")


@pytest.fixture(scope='function')
def supplier(db_session):
    return credit_service.create_supplier({"name": "Mombasa Cement Ltd"}, actor="tester")
