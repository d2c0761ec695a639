"""
HTTP API tests.

Verifies:
- Reservation conflicts surface as 409 ASSET_UNAVAILABLE
- Money-moving routes require an acting user (401 without X-User-Id)
- Malformed input is rejected with 400 before touching the services
- A full sale and return round trip through the JSON API
"""

import pytest

from conftest import actor_headers


def _create_product(client, sku="SKU-API-1", quantity=1, price=10000):
    resp = client.post("/api/products", json={
        "sku": sku,
        "name": f"Product {sku}",
        "quantity_on_hand": quantity,
        "price_cents": price,
        "price_currency": "GHS",
        "cost_cents": 6000,
        "cost_currency": "GHS",
    })
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["product"]


def _create_invoice(client, customer_id="C-API"):
    resp = client.post("/api/invoices", json={"currency": "GHS", "customer_id": customer_id})
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["invoice"]


def _pay(client, invoice_id, amount, headers):
    return client.post(
        f"/api/invoices/{invoice_id}/transactions",
        json={"transaction_type": "PAYMENT", "amount_cents": amount, "payment_method": "Cash", "comment": "Paid"},
        headers=headers,
    )


# =============================================================================
# SYSTEM
# =============================================================================


class TestHealth:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert "products" in data["checks"]["database"]["details"]


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProductRoutes:

    def test_create_and_fetch_with_availability(self, client, db_session):
        product = _create_product(client, quantity=3)
        resp = client.get(f"/api/products/{product['id']}")
        assert resp.status_code == 200
        assert resp.get_json()["product"]["availability"] == {"on_hand": 3, "reserved": 0, "available": 3}

    def test_duplicate_sku_is_409(self, client, db_session):
        _create_product(client, sku="DUP")
        resp = client.post("/api/products", json={"sku": "DUP", "name": "Again"})
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "CONFLICT"

    def test_missing_required_field(self, client, db_session):
        resp = client.post("/api/products", json={"name": "No SKU"})
        assert resp.status_code == 400

    @pytest.mark.parametrize("value", ["12.5", 1.5, "1e3", True])
    def test_non_integer_quantity_rejected(self, client, db_session, value):
        resp = client.post("/api/products", json={"sku": "BAD", "name": "Bad", "quantity_on_hand": value})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_unknown_field_rejected(self, client, db_session):
        resp = client.post("/api/products", json={"sku": "X", "name": "X", "status": "Sold"})
        assert resp.status_code == 400

    def test_adjust_stock(self, client, db_session, manager_user):
        product = _create_product(client, quantity=1)
        resp = client.post(
            f"/api/products/{product['id']}/adjust",
            json={"quantity_on_hand": 4, "reason": "Delivery"},
            headers=actor_headers(manager_user),
        )
        assert resp.status_code == 200
        assert resp.get_json()["product"]["availability"]["available"] == 4

        events = client.get(f"/api/products/{product['id']}/events").get_json()["events"]
        assert "STOCK_ADJUSTED" in [ev["event_type"] for ev in events]

    def test_adjust_below_reserved_is_409(self, client, db_session):
        product = _create_product(client, quantity=2)
        invoice = _create_invoice(client)
        client.post(f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"], "quantity": 2})

        resp = client.post(
            f"/api/products/{product['id']}/adjust",
            json={"quantity_on_hand": 1, "reason": "Count"},
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "BELOW_RESERVED"

    def test_bulk_availability(self, client, db_session):
        a = _create_product(client, sku="A", quantity=2)
        b = _create_product(client, sku="B", quantity=0)
        resp = client.post("/api/products/availability", json={"product_ids": [a["id"], b["id"]]})
        assert resp.status_code == 200
        data = resp.get_json()["availability"]
        assert data[str(a["id"])]["available"] == 2
        assert data[str(b["id"])]["available"] == 0

    def test_bulk_availability_requires_list(self, client, db_session):
        resp = client.post("/api/products/availability", json={"product_ids": 5})
        assert resp.status_code == 400

    def test_unknown_product_is_404(self, client, db_session):
        resp = client.get("/api/products/999999/availability")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "PRODUCT_NOT_FOUND"


# =============================================================================
# ACTOR HEADER
# =============================================================================


class TestActorHeader:

    def test_transaction_requires_actor(self, client, db_session):
        invoice = _create_invoice(client)
        resp = _pay(client, invoice["id"], 100, headers={})
        assert resp.status_code == 401

    def test_malformed_actor_header(self, client, db_session):
        resp = client.post("/api/invoices", json={"currency": "GHS"}, headers={"X-User-Id": "abc"})
        assert resp.status_code == 400

    def test_unknown_actor(self, client, db_session):
        resp = client.post("/api/invoices", json={"currency": "GHS"}, headers={"X-User-Id": "999999"})
        assert resp.status_code == 401

    def test_actor_is_recorded(self, client, db_session, sales_user):
        resp = client.post("/api/invoices", json={"currency": "GHS"}, headers=actor_headers(sales_user))
        assert resp.status_code == 201
        assert resp.get_json()["invoice"]["created_by_user_id"] == sales_user.id


# =============================================================================
# INVOICES
# =============================================================================


class TestInvoiceRoutes:

    def test_second_invoice_gets_409(self, client, db_session):
        product = _create_product(client, quantity=1)
        first = _create_invoice(client)
        second = _create_invoice(client)

        resp = client.post(f"/api/invoices/{first['id']}/items", json={"product_id": product["id"]})
        assert resp.status_code == 201
        assert resp.get_json()["invoice"]["total_cents"] == 10000

        resp = client.post(f"/api/invoices/{second['id']}/items", json={"product_id": product["id"]})
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "ASSET_UNAVAILABLE"
        assert body["details"]["available"] == 0
        assert body["details"]["requested"] == 1

    def test_invoice_discount_requires_actor(self, client, db_session):
        product = _create_product(client)
        invoice = _create_invoice(client)
        client.post(f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]})

        resp = client.put(
            f"/api/invoices/{invoice['id']}/discount",
            json={"discount_type": "percentage", "discount_value": 10000},
        )
        assert resp.status_code == 401
        assert client.get(f"/api/invoices/{invoice['id']}").get_json()["invoice"]["total_cents"] == 10000

    def test_line_edit_requires_actor(self, client, db_session):
        product = _create_product(client)
        invoice = _create_invoice(client)
        item = client.post(
            f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]}
        ).get_json()["item"]

        resp = client.patch(
            f"/api/invoices/{invoice['id']}/items/{item['id']}",
            json={"discount_type": "fixed", "discount_value": 9000},
        )
        assert resp.status_code == 401
        assert client.delete(f"/api/invoices/{invoice['id']}/items/{item['id']}").status_code == 401

    def test_sales_discount_over_ceiling_is_400(self, client, db_session, sales_user):
        product = _create_product(client)
        invoice = _create_invoice(client)
        client.post(f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]})

        resp = client.put(
            f"/api/invoices/{invoice['id']}/discount",
            json={"discount_type": "percentage", "discount_value": 1500},
            headers=actor_headers(sales_user),
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "DISCOUNT_LIMIT_EXCEEDED"

    def test_item_requires_product_id(self, client, db_session):
        invoice = _create_invoice(client)
        resp = client.post(f"/api/invoices/{invoice['id']}/items", json={"quantity": 1})
        assert resp.status_code == 400

    def test_overpayment_is_400(self, client, db_session, admin_user):
        product = _create_product(client)
        invoice = _create_invoice(client)
        client.post(f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]})

        resp = _pay(client, invoice["id"], 10001, actor_headers(admin_user))
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "OVERPAYMENT"

    def test_cancel_with_payment_is_409(self, client, db_session, admin_user):
        product = _create_product(client)
        invoice = _create_invoice(client)
        client.post(f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]})
        _pay(client, invoice["id"], 500, actor_headers(admin_user))

        resp = client.post(f"/api/invoices/{invoice['id']}/cancel", json={"reason": "Changed mind"})
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "HAS_NET_PAYMENTS"

    def test_cancel_releases_items(self, client, db_session):
        product = _create_product(client)
        invoice = _create_invoice(client)
        client.post(f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]})

        resp = client.post(f"/api/invoices/{invoice['id']}/cancel", json={"reason": "Walked out"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["invoice"]["status"] == "CANCELLED"
        assert data["released_items"][0]["product_id"] == product["id"]

        availability = client.get(f"/api/products/{product['id']}/availability").get_json()
        assert availability["available"] == 1

    def test_unknown_invoice_is_404(self, client, db_session):
        assert client.get("/api/invoices/999999").status_code == 404


# =============================================================================
# SALE AND RETURN ROUND TRIP
# =============================================================================


class TestSaleAndReturn:

    def test_pay_then_return_for_refund(self, client, db_session, admin_user):
        headers = actor_headers(admin_user)
        product = _create_product(client)
        invoice = _create_invoice(client)
        item = client.post(
            f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]}
        ).get_json()["item"]

        resp = _pay(client, invoice["id"], 10000, headers)
        assert resp.status_code == 201
        assert resp.get_json()["invoice"]["status"] == "PAID"

        summary = client.get(f"/api/invoices/{invoice['id']}/summary").get_json()
        assert summary["net_paid_cents"] == 10000

        returnable = client.get(f"/api/invoices/{invoice['id']}/returnable-items").get_json()["items"]
        assert returnable[0]["returnable_quantity"] == 1

        resp = client.post(
            f"/api/invoices/{invoice['id']}/returns",
            json={
                "return_type": "RETURN_REFUND",
                "reason_code": "DEFECT",
                "items": [{"invoice_item_id": item["id"]}],
            },
            headers=headers,
        )
        assert resp.status_code == 201
        draft = resp.get_json()["return"]
        assert draft["status"] == "DRAFT"

        resp = client.post(
            f"/api/returns/{draft['id']}/finalize",
            json={"refund_method": "Cash", "refund_comment": "Refunded at till"},
            headers=headers,
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["return"]["status"] == "FINALIZED"
        assert data["invoice"]["status"] == "CANCELLED"

        availability = client.get(f"/api/products/{product['id']}/availability").get_json()
        assert (availability["on_hand"], availability["reserved"], availability["available"]) == (1, 0, 1)

    def test_return_on_unpaid_invoice_is_409(self, client, db_session, admin_user):
        product = _create_product(client)
        invoice = _create_invoice(client)
        item = client.post(
            f"/api/invoices/{invoice['id']}/items", json={"product_id": product["id"]}
        ).get_json()["item"]

        resp = client.post(
            f"/api/invoices/{invoice['id']}/returns",
            json={"return_type": "RETURN_REFUND", "reason_code": "DEFECT", "items": [{"invoice_item_id": item["id"]}]},
            headers=actor_headers(admin_user),
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "NOT_PAID"

    def test_finalize_requires_actor(self, client, db_session):
        resp = client.post("/api/returns/1/finalize", json={})
        assert resp.status_code == 401

    def test_credits_listing_empty(self, client, db_session):
        resp = client.get("/api/returns/credits/C-NOBODY")
        assert resp.status_code == 200
        assert resp.get_json()["credits"] == []
