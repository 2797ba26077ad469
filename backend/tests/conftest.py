"""
Pytest fixtures for retailcore backend tests.

Provides test database setup, branch/product/investor fixtures, and test client.
"""

from datetime import datetime

import pytest

from retailcore import create_app
from retailcore.extensions import db
from retailcore.services import branch_service, inventory_service, investor_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOCK_RETRY_BACKOFF_SECONDS': 0,
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
def pool_branch(db_session):
    """The investor-pool account."""
    branch = branch_service.ensure_pool_branch()
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a(db_session):
    branch = branch_service.create_branch(name="Downtown", code="DT")
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session):
    branch = branch_service.create_branch(name="Harbor", code="HB")
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = branch_service.create_supplier(name="Acme Wholesale")
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def product(db_session):
    """Branch cost 50.00, transfer price 80.00."""
    product = inventory_service.create_product(
        sku="PHN-001",
        name="Handset",
        landing_cost="40.00",
        branch_cost="50.00",
        transfer_price="80.00",
        retail_price="120.00",
    )
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def receive_items(db_session):
    """Factory: receive serialized items of a product into a branch."""
    def _receive(product, branch, count, prefix="SN"):
        items = [
            inventory_service.receive_item(
                serial_no=f"{prefix}-{branch.code}-{n:03d}",
                product_id=product.id,
                branch_id=branch.id,
            )
            for n in range(1, count + 1)
        ]
        db_session.commit()
        return items

    return _receive


@pytest.fixture(scope='function')
def investors(db_session):
    """Two investors holding 60,000 and 40,000 of capital since May 2025."""
    alice = investor_service.create_investor("Alice")
    bob = investor_service.create_investor("Bob")
    investor_service.add_capital(alice.id, "60000.00", contribution_date=datetime(2025, 5, 1))
    investor_service.add_capital(bob.id, "40000.00", contribution_date=datetime(2025, 5, 1))
    db_session.commit()
    return alice, bob

