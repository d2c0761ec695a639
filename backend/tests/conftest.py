"""
Pytest fixtures for stock ledger backend tests.

Provides test database setup, acting users, product/invoice factories, and
test client.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import User, Product
from stockledger.models.users import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES
from stockledger.services import invoice_service, line_item_service, settlement_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
        'DEFAULT_CURRENCY': 'GHS',
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


def _make_user(db_session, username, role, max_discount_bps=None):
    user = User(username=username, full_name=username.title(), role=role, max_discount_bps=max_discount_bps)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    """Admin: no discount ceiling."""
    return _make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager_user(db_session):
    """Manager: 25% ceiling."""
    return _make_user(db_session, "manager", ROLE_MANAGER)


@pytest.fixture(scope='function')
def sales_user(db_session):
    """Sales: 10% ceiling."""
    return _make_user(db_session, "sales", ROLE_SALES)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products priced and costed in GHS (no FX involved)."""
    counter = {"n": 0}

    def _make(quantity_on_hand=1, price_cents=10000, cost_cents=6000, sku=None, **extra):
        counter["n"] += 1
        product = Product(
            sku=sku or f"SKU-{counter['n']:03d}",
            name=f"Product {counter['n']}",
            quantity_on_hand=quantity_on_hand,
            price_cents=price_cents,
            price_currency=extra.pop("price_currency", "GHS"),
            cost_cents=cost_cents,
            cost_currency=extra.pop("cost_currency", "GHS"),
            **extra,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """A single unit priced 100.00 GHS, costing 60.00 GHS."""
    return make_product(quantity_on_hand=1)


@pytest.fixture(scope='function')
def invoice(db_session):
    return invoice_service.create_invoice(currency="GHS")


def pay(invoice_id, amount_cents, actor=None, comment="Payment"):
    return settlement_service.record_transaction(
        invoice_id, "PAYMENT", amount_cents, "Cash", comment, actor=actor
    )


def refund(invoice_id, amount_cents, actor=None, comment="Refund"):
    return settlement_service.record_transaction(
        invoice_id, "REFUND", amount_cents, "Cash", comment, actor=actor
    )


def paid_invoice_with(product, quantity=1, actor=None):
    """Create an invoice holding `quantity` of product and pay it in full."""
    inv = invoice_service.create_invoice(currency="GHS", customer_id="C-1", actor=actor)
    line_item_service.add_item(inv.id, product.id, quantity=quantity, actor=actor)
    inv = invoice_service.get_invoice(inv.id)
    pay(inv.id, inv.total_cents, actor=actor)
    return invoice_service.get_invoice(inv.id)


def actor_headers(user) -> dict:
    """Helper to create the acting-user header."""
    return {'X-User-Id': str(user.id)}
