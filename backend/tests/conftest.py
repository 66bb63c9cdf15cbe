"""
Pytest fixtures for QuickShop backend tests.

Provides an in-memory database, a fake payment gateway, seeded users and
products, and helpers for authenticated requests and signed webhooks.
"""

import pytest

from quickshop import create_app
from quickshop.config import TestConfig
from quickshop.extensions import db
from quickshop.models import Category, Product
from quickshop.models.auth import ROLE_ADMIN
from quickshop.services.auth_service import create_user
from quickshop.services.payment_gateway import SnapToken, compute_signature


DEFAULT_PASSWORD = "Password123!"


class FakeGateway:
    """Stands in for MidtransGateway; records every token request."""

    def __init__(self):
        self.calls = []
        self.fail_with = None

    def create_transaction(self, *, order_number, gross_amount, customer, items, finish_url=None):
        self.calls.append({
            "order_number": order_number,
            "gross_amount": gross_amount,
            "customer": customer,
            "items": items,
            "finish_url": finish_url,
        })
        if self.fail_with is not None:
            raise self.fail_with
        return SnapToken(
            token=f"snap-{order_number}",
            redirect_url=f"https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-{order_number}",
        )


@pytest.fixture(scope='session')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='session')
def app(gateway):
    """Create application for testing."""
    app = create_app(TestConfig, payment_gateway=gateway)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, gateway):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        gateway.calls.clear()
        gateway.fail_with = None

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def customer(db_session):
    return create_user("ayu@example.com", DEFAULT_PASSWORD, full_name="Ayu Lestari", phone="081234567890")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return create_user("budi@example.com", DEFAULT_PASSWORD, full_name="Budi Santoso")


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin@quickshop.local", DEFAULT_PASSWORD, full_name="Admin", role=ROLE_ADMIN)


def get_auth_token(client, email: str, password: str = DEFAULT_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(client, customer):
    return auth_headers(get_auth_token(client, customer.email))


@pytest.fixture(scope='function')
def other_headers(client, other_customer):
    return auth_headers(get_auth_token(client, other_customer.email))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.email))


@pytest.fixture(scope='function')
def category(db_session):
    cat = Category(name="Skincare", slug="skincare")
    db_session.add(cat)
    db_session.commit()
    return cat


@pytest.fixture(scope='function')
def serum(db_session, category):
    """Rp 120,000, 10 in stock."""
    product = Product(
        name="Vitamin C Serum",
        slug="vitamin-c-serum",
        price=120000,
        stock=10,
        category_id=category.id,
        sku="SKN-001",
        image_url="/img/serum.jpg",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def moisturizer(db_session, category):
    """Rp 300,000, 3 in stock."""
    product = Product(
        name="Daily Moisturizer",
        slug="daily-moisturizer",
        price=300000,
        stock=3,
        category_id=category.id,
        sku="SKN-002",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def shipping():
    return {
        "full_name": "Ayu Lestari",
        "email": "ayu@example.com",
        "phone": "081234567890",
        "address": "Jl. Merdeka No. 10",
        "city": "Bandung",
        "province": "Jawa Barat",
        "postal_code": "40111",
    }


def signed_notification(order, transaction_status, server_key=TestConfig.MIDTRANS_SERVER_KEY,
                        fraud_status=None, status_code="200", **extra):
    """Build a gateway notification with a valid signature for `order`."""
    gross_amount = f"{order.total}.00"
    payload = {
        "order_id": order.order_number,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        "transaction_id": f"tx-{order.order_number}",
        "payment_type": "bank_transfer",
        "signature_key": compute_signature(order.order_number, status_code, gross_amount, server_key),
    }
    if fraud_status is not None:
        payload["fraud_status"] = fraud_status
    payload.update(extra)
    return payload
