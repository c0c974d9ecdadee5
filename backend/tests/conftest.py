"""
Pytest fixtures for orderflow backend tests.

Provides test database setup, tenant fixtures, and the workflow coordinator.
"""

import pytest
from orderflow import create_app
from orderflow.extensions import db
from orderflow.models import Account, Customer, FulfillmentService
from orderflow.services.workflow_service import get_coordinator


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
def coordinator(db_session):
    return get_coordinator()


@pytest.fixture(scope='function')
def event_store(app):
    return app.extensions["orderflow"]["event_store"]


@pytest.fixture(scope='function')
def account(db_session):
    """Create Account A (first tenant)."""
    account = Account(name="Acme Corp")
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def other_account(db_session):
    """Create Account B (second tenant)."""
    account = Account(name="Beta Inc")
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def customer(db_session, account):
    customer = Customer(
        account_id=account.id,
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def fulfillment_service(db_session, account):
    service = FulfillmentService(account_id=account.id, name="DHL Express", provider="dhl")
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def order_with_lines(coordinator, account, customer):
    """Pending order with 2 x 15.00 + 4 x 3.00 = 42.00."""
    result = coordinator.create_order(
        account,
        customer,
        lines=[
            {"name": "Widget", "quantity": 2, "unit_price": "15.00"},
            {"name": "Gadget", "quantity": 4, "unit_price": "3.00", "sku": "GAD-4"},
        ],
    )
    return result.unwrap()


@pytest.fixture(scope='function')
def invoiced_order(coordinator, order_with_lines):
    coordinator.validate_order(order_with_lines).unwrap()
    coordinator.invoice_order(order_with_lines).unwrap()
    return order_with_lines
