"""
Pytest fixtures for order ledger tests.

Provides the test database, two-tenant fixtures, and order payload helpers.
"""

import pytest
from flask import g, request

from orderledger import create_app
from orderledger.extensions import db
from orderledger.models import Client, Organization, Product, User
from orderledger.services import stock_service
from orderledger.services.order_schemas import OrderContext


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    # Stands in for the host application's authentication layer
    @app.before_request
    def _tenant_from_test_headers():
        org_id = request.headers.get("X-Test-Org-Id")
        if org_id:
            g.org_id = int(org_id)
            user_id = request.headers.get("X-Test-User-Id")
            g.user_id = int(user_id) if user_id else None

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
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def user_a(db_session, org_a):
    user = User(org_id=org_a.id, username="seller_a", name="Seller A")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_b(db_session, org_b):
    user = User(org_id=org_b.id, username="seller_b", name="Seller B")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def client_a(db_session, org_a):
    c = Client(org_id=org_a.id, name="Client A", email="client@acme.test")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def client_b(db_session, org_b):
    c = Client(org_id=org_b.id, name="Client B")
    db_session.add(c)
    db_session.commit()
    return c


def make_product(db_session, org, *, sku, kind="GOOD", price_cents=1000, cost_cents=400,
                 stock=0, min_stock=0):
    """Create a product and seed its stock through the ledger."""
    product = Product(
        org_id=org.id,
        sku=sku,
        name=f"Product {sku}",
        kind=kind,
        price_cents=price_cents,
        cost_cents=cost_cents,
        min_stock=min_stock,
    )
    db_session.add(product)
    db_session.commit()
    if stock:
        stock_service.post_movement(
            org_id=org.id,
            product_id=product.id,
            direction="IN",
            quantity=stock,
            reason="Initial stock",
        )
    return product


@pytest.fixture(scope='function')
def good_a(db_session, org_a):
    """GOOD product in Org A with 10 units on hand."""
    return make_product(db_session, org_a, sku="GOOD-A-001", stock=10)


@pytest.fixture(scope='function')
def good_a2(db_session, org_a):
    """Second GOOD product in Org A with 20 units on hand."""
    return make_product(db_session, org_a, sku="GOOD-A-002", price_cents=250, stock=20)


@pytest.fixture(scope='function')
def service_a(db_session, org_a):
    """SERVICE product in Org A (no stock)."""
    return make_product(db_session, org_a, sku="SERV-A-001", kind="SERVICE", price_cents=5000)


@pytest.fixture(scope='function')
def good_b(db_session, org_b):
    """GOOD product in Org B with 10 units on hand."""
    return make_product(db_session, org_b, sku="GOOD-B-001", stock=10)


@pytest.fixture(scope='function')
def ctx_a(org_a, user_a):
    return OrderContext(org_id=org_a.id, actor_user_id=user_a.id)


@pytest.fixture(scope='function')
def ctx_b(org_b, user_b):
    return OrderContext(org_id=org_b.id, actor_user_id=user_b.id)


def line(product=None, quantity=1, unit_price_cents=None, description=None, kind=None) -> dict:
    """Order line payload for a catalog product or a free-text line."""
    data = {
        "description": description or (product.name if product is not None else "Free-text item"),
        "quantity": quantity,
        "unit_price_cents": unit_price_cents if unit_price_cents is not None
        else (product.price_cents if product is not None else 0),
    }
    if product is not None:
        data["product_id"] = product.id
    if kind is not None:
        data["kind"] = kind
    return data


def order_payload(client, lines, status="QUOTE", **extra) -> dict:
    payload = {"client_id": client.id, "status": status, "lines": lines}
    payload.update(extra)
    return payload


def tenant_headers(org, user=None) -> dict:
    """Headers the test tenant hook turns into g.org_id / g.user_id."""
    headers = {"X-Test-Org-Id": str(org.id)}
    if user is not None:
        headers["X-Test-User-Id"] = str(user.id)
    return headers
