"""
Pytest fixtures for ShiftPOS backend tests.

Provides an in-memory database, a test client, and domain fixtures
(locations, users, products with stock, customers with credit, open shifts).
"""

import pytest

from shiftpos import create_app
from shiftpos.extensions import db, notifier
from shiftpos.models import Location, Product
from shiftpos.models.auth import ROLE_ADMIN, ROLE_SELLER
from shiftpos.services import credit_service, inventory_service, shift_service
from shiftpos.services.auth_service import create_user
from shiftpos.services.sales_service import SaleLineRequest, SaleRequest

PASSWORD = "Password123"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'EVENT_DISPATCH_MODE': 'sync',
    'BCRYPT_ROUNDS': 4,
    'PRICE_OVERRIDE_POLICY': 'NOT_ABOVE_CATALOG',
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
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def captured_events(app):
    """Collect every event published by the notifier during one test."""
    events = []
    notifier.add_sink(events.append)
    yield events
    notifier.remove_sink(events.append)


@pytest.fixture(scope='function')
def location(db_session):
    loc = Location(name="Main Store", address="1 Market St")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def other_location(db_session):
    loc = Location(name="Airport Kiosk")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def admin(db_session, location):
    return create_user("admin", PASSWORD, role=ROLE_ADMIN, location_id=location.id)


@pytest.fixture(scope='function')
def seller(db_session, location):
    return create_user("seller", PASSWORD, role=ROLE_SELLER, location_id=location.id)


@pytest.fixture(scope='function')
def other_seller(db_session, location):
    return create_user("seller2", PASSWORD, role=ROLE_SELLER, location_id=location.id)


@pytest.fixture(scope='function')
def product_a(db_session):
    """Catalog price 10.00"""
    product = Product(sku="SKU-A", name="Coffee Beans", price_cents=1000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session):
    """Catalog price 2.50"""
    product = Product(sku="SKU-B", name="Croissant", price_cents=250)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def set_stock(db_session):
    """set_stock(location_id, product_id, quantity, threshold=2) -> StockEntry"""
    def _set(location_id, product_id, quantity, threshold=2):
        return inventory_service.adjust_stock(
            location_id, product_id, quantity, "SET", minimum_threshold=threshold,
        )
    return _set


@pytest.fixture(scope='function')
def stocked(location, product_a, product_b, set_stock):
    """10 x product_a and 20 x product_b at `location`."""
    set_stock(location.id, product_a.id, 10)
    set_stock(location.id, product_b.id, 20)


@pytest.fixture(scope='function')
def customer(db_session, admin):
    """Customer with 100.00 of store credit."""
    return credit_service.create_customer(
        {"name": "Ana Souza", "email": "ana@example.com", "credit_balance_cents": 10000},
        actor=admin,
    )


@pytest.fixture(scope='function')
def open_shift(seller, location):
    """Seller shift with a 50.00 opening float."""
    return shift_service.open_shift(seller.id, location.id, 5000)


@pytest.fixture(scope='function')
def make_request():
    """
    make_request("CASH", [(product_id, qty), (product_id, qty, price)], **kwargs) -> SaleRequest
    """
    def _make(payment_method, lines, **kwargs):
        return SaleRequest(
            payment_method=payment_method,
            lines=tuple(SaleLineRequest(*line) for line in lines),
            **kwargs,
        )
    return _make


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))


@pytest.fixture(scope='function')
def seller_headers(client, seller):
    return auth_headers(get_auth_token(client, seller.username))
