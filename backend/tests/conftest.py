"""
Pytest fixtures for credit desk backend tests.

Provides test database setup, data factories, and test client.
"""

import pytest

from creditdesk import create_app
from creditdesk.extensions import db
from creditdesk.models import Customer, Order, OrderLine, Product, ReturnReason
from creditdesk.services import credit_transaction_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'STATEMENT_TIMEZONE': 'Europe/Vilnius',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
def make_customer(db_session):
    """Factory: persisted customer with a credit limit (cents)."""
    def _make(code="C001", limit_cents=100_000, balance_cents=0, customer_type="RETAIL",
              first_name="Jonas", last_name="Jonaitis", company_name=None, is_active=True):
        customer = Customer(
            code=code,
            customer_type=customer_type,
            first_name=first_name,
            last_name=last_name,
            company_name=company_name,
            credit_limit_cents=limit_cents,
            current_balance_cents=balance_cents,
            is_active=is_active,
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: persisted product with a base price (cents)."""
    def _make(code="A", price_cents=10_000, name=None, is_active=True):
        product = Product(code=code, name=name or f"Product {code}", base_price_cents=price_cents, is_active=is_active)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_reason(db_session):
    def _make(code="DEFECTIVE", allows_restock=True, requires_inspection=True, is_active=True):
        reason = ReturnReason(
            code=code,
            name=code.title(),
            allows_restock=allows_restock,
            requires_inspection=requires_inspection,
            is_active=is_active,
        )
        db_session.add(reason)
        db_session.commit()
        return reason
    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: order with lines given as (product, quantity, unit_price_cents)."""
    def _make(customer, lines, order_number="ORD-000001", status="COMPLETED"):
        order = Order(order_number=order_number, customer_id=customer.id, status=status)
        for product, quantity, price in lines:
            order.lines.append(OrderLine(product_id=product.id, quantity=quantity, unit_price_cents=price))
        db_session.add(order)
        db_session.commit()
        return order
    return _make


@pytest.fixture(scope='function')
def make_transaction(db_session):
    """Factory: PENDING credit transaction created through the service."""
    def _make(customer, lines, transaction_type="PICKUP", performed_by="Jonas", role="EMPLOYEE", **kwargs):
        txn, _credit = credit_transaction_service.create_transaction(
            transaction_type=transaction_type,
            customer_code=customer.code,
            lines=lines,
            performed_by=performed_by,
            performed_by_role=role,
            **kwargs,
        )
        return txn
    return _make


@pytest.fixture(scope='function')
def confirm():
    """Confirm a transaction with a dummy signature."""
    def _confirm(txn_id, confirmed_by="Petras"):
        return credit_transaction_service.confirm_transaction(
            txn_id,
            confirmed_by=confirmed_by,
            signature_data="data:image/png;base64,AAAA",
        )
    return _confirm
