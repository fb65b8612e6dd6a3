"""
Pytest fixtures for grocer backend tests.

Provides a fresh in-memory database per test, seeded staff and catalog,
auth contexts for service calls, and header helpers for the test client.
"""

from decimal import Decimal

import pytest

from grocer import create_app
from grocer.extensions import db
from grocer.models import Category, Product
from grocer.permissions import AuthContext
from grocer.services import auth_service, inventory_service


CASHIER_PIN = "1111"
MANAGER_PIN = "2222"


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'DEFAULT_TERMINAL': 'T1',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def cashier(db_session):
    return auth_service.create_user("cashier", "cashier", pin=CASHIER_PIN, display_name="Cashier")


@pytest.fixture(scope='function')
def manager(db_session):
    return auth_service.create_user("manager", "manager", pin=MANAGER_PIN, display_name="Manager")


@pytest.fixture(scope='function')
def cashier_ctx(cashier):
    return AuthContext(user_id=cashier.id, role="cashier", username="cashier", request_id="req-cashier")


@pytest.fixture(scope='function')
def manager_ctx(manager):
    return AuthContext(user_id=manager.id, role="manager", username="manager", request_id="req-manager")


@pytest.fixture(scope='function')
def fruit(db_session):
    category = Category(name="Fruit")
    db_session.add(category)
    db_session.commit()
    return category


def _product(db_session, **kwargs):
    product = Product(**kwargs)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def apple(db_session, fruit):
    """Piece item, 10.00 each."""
    return _product(
        db_session, sku="APL-1", barcode="2000000000011", name="Apple",
        unit="pc", category_id=fruit.id, price_cents=1000, cost_cents=600,
    )


@pytest.fixture(scope='function')
def bread(db_session):
    """Piece item, 20.00 each, no category."""
    return _product(
        db_session, sku="BRD-1", barcode="2000000000028", name="Bread",
        unit="pc", price_cents=2000, cost_cents=1200,
    )


@pytest.fixture(scope='function')
def milk(db_session):
    """Piece item, 30.00 each."""
    return _product(
        db_session, sku="MLK-1", barcode="2000000000035", name="Milk",
        unit="pc", price_cents=3000, cost_cents=2000,
    )


@pytest.fixture(scope='function')
def bananas(db_session, fruit):
    """Weighed item, 40.00 per kg."""
    return _product(
        db_session, sku="BAN-1", barcode="2100000000017", name="Bananas",
        unit="kg", category_id=fruit.id, price_cents=4000, cost_cents=2500,
    )


@pytest.fixture(scope='function')
def stocked(apple, bread, milk, bananas, manager_ctx):
    """Receive opening stock for every product."""
    inventory_service.post_receive(
        [
            {"sku": "APL-1", "qty": 50},
            {"sku": "BRD-1", "qty": 20},
            {"sku": "MLK-1", "qty": 30},
            {"sku": "BAN-1", "qty": "12.500"},
        ],
        ctx=manager_ctx,
    )
    return {"apple": apple, "bread": bread, "milk": milk, "bananas": bananas}


def stock_of(product) -> Decimal:
    return inventory_service.get_quantity_on_hand(product.id)


def user_headers(user_id: int, request_id: str | None = None) -> dict:
    """Helper to create identity headers for the test client."""
    headers = {'X-User-Id': str(user_id)}
    if request_id:
        headers['X-Request-Id'] = request_id
    return headers


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    return user_headers(cashier.id)


@pytest.fixture(scope='function')
def manager_headers(manager):
    return user_headers(manager.id)
