"""Admin order management, fulfilment and dashboard stats."""

import pytest

from quickshop.extensions import db
from quickshop.models import Order
from quickshop.services import order_service


@pytest.fixture
def order(customer, serum, shipping):
    return order_service.create_order(
        user_id=customer.id,
        items=[{"product_id": serum.id, "quantity": 3}],
        shipping=shipping,
    )


def set_status(order, status, payment_status=None):
    row = db.session.get(Order, order.id)
    row.status = status
    if payment_status:
        row.payment_status = payment_status
    db.session.commit()


class TestOrders:

    def test_lists_all_orders_with_filters(self, client, admin_headers, order):
        resp = client.get("/api/admin/orders", headers=admin_headers)
        assert resp.json["count"] == 1

        resp = client.get("/api/admin/orders?payment_status=paid", headers=admin_headers)
        assert resp.json["count"] == 0

        resp = client.get("/api/admin/orders?q=ayu", headers=admin_headers)
        assert resp.json["items"][0]["order_number"] == order.order_number


class TestFulfilment:

    def test_processing_to_shipped_to_delivered(self, client, admin_headers, order):
        set_status(order, "processing", "paid")

        resp = client.post(f"/api/admin/orders/{order.id}/status", json={"status": "shipped"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "shipped"

        resp = client.post(f"/api/admin/orders/{order.id}/status", json={"status": "delivered"},
                           headers=admin_headers)
        assert resp.json["status"] == "delivered"

    def test_cannot_skip_a_step(self, client, admin_headers, order):
        set_status(order, "processing", "paid")
        resp = client.post(f"/api/admin/orders/{order.id}/status", json={"status": "delivered"},
                           headers=admin_headers)
        assert resp.status_code == 409

    def test_unpaid_order_cannot_ship(self, client, admin_headers, order):
        resp = client.post(f"/api/admin/orders/{order.id}/status", json={"status": "shipped"},
                           headers=admin_headers)
        assert resp.status_code == 409

    def test_unsupported_target(self, client, admin_headers, order):
        resp = client.post(f"/api/admin/orders/{order.id}/status", json={"status": "paid"},
                           headers=admin_headers)
        assert resp.status_code == 400

    def test_unknown_order(self, client, admin_headers, db_session):
        resp = client.post("/api/admin/orders/9999/status", json={"status": "shipped"}, headers=admin_headers)
        assert resp.status_code == 404


class TestStats:

    def test_dashboard_counters(self, client, admin_headers, order, serum, moisturizer):
        resp = client.get("/api/admin/stats", headers=admin_headers)

        assert resp.status_code == 200
        catalog = resp.json["catalog"]
        assert catalog["total_products"] == 2
        assert catalog["active_products"] == 2
        assert catalog["low_stock_products"] == 1
        assert catalog["total_value"] == 120000 * 10 + 300000 * 3
        assert resp.json["orders"]["awaiting_payment"] == 1
        assert resp.json["orders"]["pending_cancellations"] == 0


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["checks"]["database"]["status"] == "healthy"
    assert resp.json["checks"]["payment_gateway"]["details"]["server_key_configured"] is True
