"""
Checkout tests.

Verifies:
- Shipping fee rule and totals
- Order + items written together with catalog prices
- Shipping form validation
- Gateway failure leaves a retryable pending order
"""

import re

import pytest
from sqlalchemy import event

from quickshop.extensions import db
from quickshop.models import Order, OrderItem
from quickshop.services import order_service
from quickshop.services.order_service import PricingRule, generate_order_number
from quickshop.services.payment_gateway import GatewayError


# =============================================================================
# PRICING
# =============================================================================


class TestPricing:

    @pytest.mark.parametrize(
        "subtotal,fee,total",
        [
            (480000, 25000, 505000),
            (600000, 0, 600000),
            (500000, 0, 500000),
            (0, 25000, 25000),
        ],
    )
    def test_totals(self, subtotal, fee, total):
        totals = PricingRule().totals(subtotal)
        assert totals == {"subtotal": subtotal, "shipping_fee": fee, "total": total}

    def test_from_config(self):
        rule = PricingRule.from_config({"SHIPPING_FEE": 10000, "FREE_SHIPPING_THRESHOLD": 100000})
        assert rule.shipping_for(99999) == 10000
        assert rule.shipping_for(100000) == 0

    def test_order_number_format(self):
        number = generate_order_number(now_ms=1700000000000)
        assert re.fullmatch(r"ORD-1700000000000-[0-9A-Z]{9}", number)


# =============================================================================
# CHECKOUT API
# =============================================================================


class TestCheckout:

    def test_creates_order_and_token(self, client, customer_headers, serum, shipping, gateway):
        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 4}],
            "shipping": shipping,
        }, headers=customer_headers)

        assert resp.status_code == 201
        body = resp.json
        order = body["order"]
        assert order["subtotal"] == 480000
        assert order["shipping_fee"] == 25000
        assert order["total"] == 505000
        assert order["status"] == "pending"
        assert order["payment_status"] == "unpaid"
        assert order["payment_token"] == body["token"]
        assert order["order_items"][0]["price"] == 120000
        assert order["order_items"][0]["product_sku"] == "SKN-001"

        call = gateway.calls[-1]
        assert call["gross_amount"] == 505000
        assert call["items"][-1] == {"id": "SHIPPING", "name": "Shipping Fee", "price": 25000, "quantity": 1}
        assert sum(i["price"] * i["quantity"] for i in call["items"]) == 505000
        assert call["finish_url"].endswith(f"/orders/{order['id']}")

    def test_free_shipping_still_sends_shipping_line(self, client, customer_headers, moisturizer, shipping, gateway):
        resp = client.post("/api/orders", json={
            "items": [{"product_id": moisturizer.id, "quantity": 2}],
            "shipping": shipping,
        }, headers=customer_headers)

        assert resp.status_code == 201
        assert resp.json["order"]["total"] == 600000
        assert gateway.calls[-1]["items"][-1]["price"] == 0

    def test_client_price_is_ignored(self, client, customer_headers, serum, shipping):
        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1, "price": 1}],
            "shipping": shipping,
        }, headers=customer_headers)
        assert resp.json["order"]["subtotal"] == 120000

    def test_requires_auth(self, client, serum, shipping):
        resp = client.post("/api/orders", json={"items": [{"product_id": serum.id, "quantity": 1}], "shipping": shipping})
        assert resp.status_code == 401

    def test_empty_cart_rejected(self, client, customer_headers, shipping):
        resp = client.post("/api/orders", json={"items": [], "shipping": shipping}, headers=customer_headers)
        assert resp.status_code == 400
        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("city", "", "Please fill in all required fields"),
            ("email", "ayu@example", "Please enter a valid email address"),
            ("phone", "12345", "Please enter a valid phone number"),
        ],
    )
    def test_shipping_validation(self, client, customer_headers, serum, shipping, field, value, message):
        shipping[field] = value
        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == message

    @pytest.mark.parametrize("phone", ["+6281234567890", "6281234567890", "0812345678"])
    def test_accepted_phone_formats(self, client, customer_headers, serum, shipping, phone):
        shipping["phone"] = phone
        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers)
        assert resp.status_code == 201

    def test_quantity_above_stock_conflicts(self, client, customer_headers, moisturizer, shipping):
        resp = client.post("/api/orders", json={
            "items": [{"product_id": moisturizer.id, "quantity": 4}],
            "shipping": shipping,
        }, headers=customer_headers)
        assert resp.status_code == 409
        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderItem).count() == 0

    def test_inactive_product_conflicts(self, client, customer_headers, serum, shipping):
        serum.is_active = False
        db.session.commit()
        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers)
        assert resp.status_code == 409

    def test_checkout_does_not_touch_stock(self, client, customer_headers, serum, shipping):
        client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 2}],
            "shipping": shipping,
        }, headers=customer_headers)
        db.session.refresh(serum)
        assert serum.stock == 10


# =============================================================================
# ALL-OR-NOTHING WRITE
# =============================================================================


@pytest.fixture
def broken_line_insert():
    """Make every OrderItem INSERT fail inside the checkout flush."""
    def _fail(mapper, connection, target):
        raise RuntimeError("order_items write failed")

    event.listen(OrderItem, "before_insert", _fail)
    yield
    event.remove(OrderItem, "before_insert", _fail)


class TestAtomicWrite:

    def test_failed_line_insert_leaves_no_order(self, customer, serum, shipping, broken_line_insert):
        with pytest.raises(RuntimeError):
            order_service.create_order(
                user_id=customer.id,
                items=[{"product_id": serum.id, "quantity": 1}],
                shipping=shipping,
            )

        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderItem).count() == 0

    def test_route_answers_500_and_persists_nothing(self, client, customer_headers, serum, shipping,
                                                   gateway, broken_line_insert):
        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers)

        assert resp.status_code == 500
        assert resp.json["error"] == "Internal server error"
        assert db.session.query(Order).count() == 0
        assert gateway.calls == []


# =============================================================================
# GATEWAY FAILURE AND RETRY
# =============================================================================


class TestPaymentRetry:

    def test_gateway_failure_keeps_order_pending(self, client, customer_headers, serum, shipping, gateway):
        gateway.fail_with = GatewayError("Payment gateway unreachable")

        resp = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers)

        assert resp.status_code == 502
        order = resp.json["order"]
        assert order["status"] == "pending"
        assert order["payment_status"] == "unpaid"
        assert order["payment_token"] is None
        assert db.session.query(Order).count() == 1

    def test_retry_reuses_existing_order(self, client, customer_headers, serum, shipping, gateway):
        gateway.fail_with = GatewayError("timeout")
        order_id = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers).json["order"]["id"]

        gateway.fail_with = None
        resp = client.post(f"/api/orders/{order_id}/pay", headers=customer_headers)

        assert resp.status_code == 200
        assert resp.json["token"].startswith("snap-ORD-")
        assert db.session.query(Order).count() == 1

    def test_retry_refused_for_paid_order(self, client, customer_headers, serum, shipping):
        order_id = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers).json["order"]["id"]
        order = db.session.get(Order, order_id)
        order.payment_status = "paid"
        order.status = "processing"
        db.session.commit()

        resp = client.post(f"/api/orders/{order_id}/pay", headers=customer_headers)
        assert resp.status_code == 409

    def test_retry_on_someone_elses_order_is_not_found(self, client, customer_headers, other_headers, serum, shipping):
        order_id = client.post("/api/orders", json={
            "items": [{"product_id": serum.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=customer_headers).json["order"]["id"]

        resp = client.post(f"/api/orders/{order_id}/pay", headers=other_headers)
        assert resp.status_code == 404


# =============================================================================
# ORDER HISTORY
# =============================================================================


class TestOrderHistory:

    def _place(self, client, headers, product, shipping):
        return client.post("/api/orders", json={
            "items": [{"product_id": product.id, "quantity": 1}],
            "shipping": shipping,
        }, headers=headers).json["order"]

    def test_lists_only_own_orders(self, client, customer_headers, other_headers, serum, shipping):
        mine = self._place(client, customer_headers, serum, shipping)
        self._place(client, other_headers, serum, shipping)

        resp = client.get("/api/orders", headers=customer_headers)
        assert resp.status_code == 200
        assert [o["id"] for o in resp.json["items"]] == [mine["id"]]

    def test_search_by_order_number(self, client, customer_headers, serum, shipping):
        first = self._place(client, customer_headers, serum, shipping)
        self._place(client, customer_headers, serum, shipping)

        resp = client.get(f"/api/orders?q={first['order_number'].lower()}", headers=customer_headers)
        assert [o["id"] for o in resp.json["items"]] == [first["id"]]

    def test_invalid_status_filter(self, client, customer_headers):
        resp = client.get("/api/orders?status=bogus", headers=customer_headers)
        assert resp.status_code == 400

    def test_detail_includes_items_and_cancellations(self, client, customer_headers, serum, shipping):
        order = self._place(client, customer_headers, serum, shipping)
        resp = client.get(f"/api/orders/{order['id']}", headers=customer_headers)
        assert resp.status_code == 200
        assert len(resp.json["order_items"]) == 1
        assert resp.json["cancellations"] == []
        assert "payment_logs" not in resp.json

    def test_admin_sees_any_order(self, client, customer_headers, admin_headers, serum, shipping):
        order = self._place(client, customer_headers, serum, shipping)
        resp = client.get(f"/api/orders/{order['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["payment_logs"] == []
