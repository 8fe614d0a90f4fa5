"""
HTTP API tests.

Exercises the JSON surface end to end: login, catalog and customer
management, stock reads and corrections, the sale endpoint and the shift
lifecycle, plus the structured error body every failure returns.
"""

import pytest

from conftest import PASSWORD, auth_headers, get_auth_token
from shiftpos.extensions import db
from shiftpos.models import Location, Sale, StockEntry, User


# =============================================================================
# SYSTEM / AUTH
# =============================================================================


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["status"] == "healthy"
        assert resp.json["checks"]["events"]["mode"] == "sync"

    def test_cors_header_for_allowed_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

    def test_no_cors_header_for_unknown_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestAuth:

    def test_login_and_me(self, client, seller):
        resp = client.post("/api/auth/login", json={"username": "seller", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "seller"
        assert resp.json["expires_at"].endswith("Z")

        me = client.get("/api/auth/me", headers=auth_headers(resp.json["token"]))
        assert me.status_code == 200
        assert me.json["user"]["role"] == "SELLER"

    def test_bad_password(self, client, seller):
        resp = client.post("/api/auth/login", json={"username": "seller", "password": "Wrong12345"})
        assert resp.status_code == 401
        assert resp.json["error"] == "UNAUTHORIZED"

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "seller"})
        assert resp.status_code == 400
        assert resp.json["error"] == "VALIDATION"


# =============================================================================
# CATALOG
# =============================================================================


class TestProducts:

    def test_create_and_list(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "TEA-1", "name": "Green Tea", "price_cents": 450},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        product = resp.json["product"]
        assert product["price_cents"] == 450
        assert product["is_active"] is True

        listing = client.get("/api/products?q=tea", headers=admin_headers)
        assert listing.status_code == 200
        assert [p["sku"] for p in listing.json["items"]] == ["TEA-1"]

    def test_pagination(self, client, admin_headers, product_a, product_b):
        resp = client.get("/api/products?page=1&per_page=1", headers=admin_headers)
        assert resp.json["count"] == 1
        assert resp.json["pagination"]["total"] == 2
        assert resp.json["pagination"]["has_next"] is True

    def test_duplicate_sku_conflict(self, client, admin_headers, product_a):
        resp = client.post(
            "/api/products",
            json={"sku": "SKU-A", "name": "Copy", "price_cents": 100},
            headers=admin_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "CONFLICT"

    def test_invalid_price_rejected(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"sku": "BAD-1", "name": "Bad", "price_cents": -5},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "VALIDATION"

    def test_update_price(self, client, admin_headers, product_a):
        resp = client.put(f"/api/products/{product_a.id}", json={"price_cents": 1100}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["product"]["price_cents"] == 1100

    def test_delete_is_soft(self, client, admin_headers, product_a):
        assert client.delete(f"/api/products/{product_a.id}", headers=admin_headers).json == {"ok": True}

        listing = client.get("/api/products", headers=admin_headers)
        assert listing.json["items"] == []

        with_inactive = client.get("/api/products?include_inactive=true", headers=admin_headers)
        assert with_inactive.json["items"][0]["is_active"] is False

    def test_unknown_product(self, client, seller_headers):
        resp = client.get("/api/products/999999", headers=seller_headers)
        assert resp.status_code == 404
        assert resp.json["error"] == "PRODUCT_NOT_FOUND"


class TestLocations:

    def test_crud(self, client, admin_headers, location):
        created = client.post("/api/locations", json={"name": "Harbor Stand"}, headers=admin_headers)
        assert created.status_code == 201
        location_id = created.json["location"]["id"]

        updated = client.put(f"/api/locations/{location_id}", json={"address": "Pier 3"}, headers=admin_headers)
        assert updated.json["location"]["address"] == "Pier 3"

        assert client.delete(f"/api/locations/{location_id}", headers=admin_headers).status_code == 200
        names = [loc["name"] for loc in client.get("/api/locations", headers=admin_headers).json["items"]]
        assert names == ["Main Store"]


class TestCustomers:

    def test_seller_can_create_customer_without_credit(self, client, seller_headers):
        resp = client.post("/api/customers", json={"name": "Walk In"}, headers=seller_headers)
        assert resp.status_code == 201
        assert resp.json["customer"]["credit_balance_cents"] == 0

    def test_admin_opening_balance(self, client, admin_headers):
        resp = client.post(
            "/api/customers",
            json={"name": "Regular", "credit_balance_cents": 2500},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        customer_id = resp.json["customer"]["id"]

        txns = client.get(f"/api/customers/{customer_id}/credit-transactions", headers=admin_headers)
        assert [t["transaction_type"] for t in txns.json["items"]] == ["TOP_UP"]

    def test_balance_cannot_be_edited(self, client, admin_headers, customer):
        resp = client.put(
            f"/api/customers/{customer.id}",
            json={"credit_balance_cents": 1},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert client.get(f"/api/customers/{customer.id}", headers=admin_headers).json[
            "customer"]["credit_balance_cents"] == 10000

    def test_top_up_rejects_zero(self, client, admin_headers, customer):
        resp = client.post(f"/api/customers/{customer.id}/credit", json={"amount_cents": 0}, headers=admin_headers)
        assert resp.status_code == 400

    def test_search(self, client, seller_headers, customer):
        resp = client.get("/api/customers?q=ana", headers=seller_headers)
        assert [c["id"] for c in resp.json["items"]] == [customer.id]


# =============================================================================
# STOCK
# =============================================================================


class TestStock:

    def test_availability(self, client, seller_headers, location, other_location, product_a, product_b, stocked):
        resp = client.get(
            f"/api/stock/availability?location_id={location.id}&product_ids={product_a.id},{product_b.id}",
            headers=seller_headers,
        )
        assert resp.status_code == 200
        assert resp.json["availability"] == {str(product_a.id): 10, str(product_b.id): 20}

        elsewhere = client.get(
            f"/api/stock/availability?location_id={other_location.id}&product_ids={product_a.id}",
            headers=seller_headers,
        )
        assert elsewhere.json["availability"] == {str(product_a.id): 0}

    def test_availability_requires_product_ids(self, client, seller_headers, location):
        resp = client.get(f"/api/stock/availability?location_id={location.id}", headers=seller_headers)
        assert resp.status_code == 400
        assert resp.json["details"]["field"] == "product_ids"

    def test_list_low_stock(self, client, admin_headers, location, product_a, product_b, stocked, set_stock):
        set_stock(location.id, product_b.id, 1)
        resp = client.get(f"/api/stock?location_id={location.id}&low_only=true", headers=admin_headers)
        assert [(i["sku"], i["quantity"]) for i in resp.json["items"]] == [("SKU-B", 1)]

    def test_seller_adjusts_at_shift_location(self, client, seller_headers, location, product_a, stocked,
                                              open_shift):
        resp = client.put(
            f"/api/stock/{product_a.id}/{location.id}",
            json={"quantity": 2, "mode": "SUBTRACT", "note": "broken bag"},
            headers=seller_headers,
        )
        assert resp.status_code == 200
        assert resp.json["stock"]["quantity"] == 8

        movements = client.get(f"/api/stock/movements?location_id={location.id}", headers=seller_headers)
        assert movements.json["items"][0]["movement_type"] == "SUBTRACT"

    def test_bad_mode(self, client, admin_headers, location, product_a):
        resp = client.put(
            f"/api/stock/{product_a.id}/{location.id}",
            json={"quantity": 2, "mode": "TELEPORT"},
            headers=admin_headers,
        )
        assert resp.status_code == 400


# =============================================================================
# SHIFTS + SALES
# =============================================================================


class TestShiftFlow:

    def test_open_sell_close(self, client, seller_headers, location, product_a, product_b, stocked):
        opened = client.post("/api/shifts/open", json={"opening_float_cents": 5000}, headers=seller_headers)
        assert opened.status_code == 201
        shift_id = opened.json["shift"]["id"]
        assert opened.json["shift"]["location_id"] == location.id

        again = client.post("/api/shifts/open", json={"opening_float_cents": 0}, headers=seller_headers)
        assert again.status_code == 409
        assert again.json["error"] == "SHIFT_ALREADY_OPEN"

        sale = client.post(
            "/api/sales",
            json={
                "payment_method": "cash",
                "lines": [
                    {"product_id": product_a.id, "quantity": 3},
                    {"product_id": product_b.id, "quantity": 2},
                ],
                "cash_tendered_cents": 4000,
            },
            headers=seller_headers,
        )
        assert sale.status_code == 201
        body = sale.json["sale"]
        assert body["total_cents"] == 3500
        assert body["change_due_cents"] == 500
        assert body["shift_id"] == shift_id
        assert [line["line_number"] for line in body["lines"]] == [1, 2]

        active = client.get("/api/shifts/active", headers=seller_headers)
        assert active.json["shift"]["summary"]["expected_cash_cents"] == 8500

        closed = client.post(
            f"/api/shifts/{shift_id}/close",
            json={"closing_cash_cents": 8500, "notes": "balanced"},
            headers=seller_headers,
        )
        assert closed.status_code == 200
        assert closed.json["shift"]["variance_cents"] == 0
        assert closed.json["shift"]["closed_at"].endswith("Z")

        again = client.post(f"/api/shifts/{shift_id}/close", json={"closing_cash_cents": 1}, headers=seller_headers)
        assert again.status_code == 409
        assert again.json["error"] == "SHIFT_ALREADY_CLOSED"

        assert client.get("/api/shifts/active", headers=seller_headers).json == {"shift": None}

    def test_close_requires_amount(self, client, seller_headers, open_shift):
        resp = client.post(f"/api/shifts/{open_shift.id}/close", json={}, headers=seller_headers)
        assert resp.status_code == 400

    @pytest.mark.parametrize("notes", [123, ["short"], {"text": "x"}, True])
    def test_close_rejects_non_string_notes(self, client, seller_headers, open_shift, notes):
        resp = client.post(
            f"/api/shifts/{open_shift.id}/close",
            json={"closing_cash_cents": 5000, "notes": notes},
            headers=seller_headers,
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "VALIDATION"
        assert resp.json["details"]["field"] == "notes"
        assert client.get("/api/shifts/active", headers=seller_headers).json["shift"]["id"] == open_shift.id

    def test_list_shifts_scoped_to_seller(self, client, seller_headers, other_seller, location, open_shift):
        from shiftpos.services import shift_service

        shift_service.open_shift(other_seller.id, location.id, 0)
        resp = client.get("/api/shifts", headers=seller_headers)
        assert [s["id"] for s in resp.json["items"]] == [open_shift.id]


class TestSalesEndpoint:

    def test_sale_without_shift(self, client, seller_headers, product_a, stocked):
        resp = client.post(
            "/api/sales",
            json={"payment_method": "CASH", "lines": [{"product_id": product_a.id, "quantity": 1}]},
            headers=seller_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "NO_OPEN_SHIFT"

    def test_store_failure_returns_503(self, monkeypatch, client, seller_headers, product_a, stocked, open_shift):
        from sqlalchemy.exc import OperationalError

        from shiftpos.services import sales_service

        def locked_availability(*args, **kwargs):
            raise OperationalError("SELECT stock_entries ...", {}, Exception("database is locked"))

        monkeypatch.setattr(sales_service, "check_availability", locked_availability)
        resp = client.post(
            "/api/sales",
            json={"payment_method": "CASH", "lines": [{"product_id": product_a.id, "quantity": 1}]},
            headers=seller_headers,
        )
        assert resp.status_code == 503
        assert resp.json["error"] == "STORE_UNAVAILABLE"

    def test_insufficient_stock_body(self, client, seller_headers, location, product_a, stocked, open_shift):
        resp = client.post(
            "/api/sales",
            json={"payment_method": "CASH", "lines": [{"product_id": product_a.id, "quantity": 11}]},
            headers=seller_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "INSUFFICIENT_STOCK"
        assert resp.json["details"]["available"] == 10
        assert resp.json["details"]["requested"] == 11
        assert db.session.query(Sale).count() == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"payment_method": "CASH", "lines": []},
            {"payment_method": "BARTER", "lines": [{"product_id": 1, "quantity": 1}]},
            {"payment_method": "CASH", "lines": [{"product_id": 1, "quantity": 0}]},
            {"payment_method": "CASH", "lines": [{"product_id": "abc", "quantity": 1}]},
            {"payment_method": "CASH", "lines": "nope"},
        ],
    )
    def test_validation_errors(self, client, seller_headers, payload):
        resp = client.post("/api/sales", json=payload, headers=seller_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "VALIDATION"
        assert set(resp.json) == {"error", "message", "details"}

    def test_credit_sale(self, client, seller_headers, location, product_b, stocked, open_shift, customer):
        resp = client.post(
            "/api/sales",
            json={
                "payment_method": "CREDIT",
                "customer_id": customer.id,
                "credit_requested_cents": 500,
                "lines": [{"product_id": product_b.id, "quantity": 2}],
            },
            headers=seller_headers,
        )
        assert resp.status_code == 201
        assert resp.json["sale"]["credit_applied_cents"] == 500
        quantity = db.session.query(StockEntry.quantity).filter_by(
            location_id=location.id, product_id=product_b.id,
        ).scalar()
        assert quantity == 18

    def test_admin_direct_sale_needs_location(self, client, admin_headers, location, product_a, stocked):
        resp = client.post(
            "/api/sales",
            json={
                "payment_method": "CASH",
                "location_id": location.id,
                "lines": [{"product_id": product_a.id, "quantity": 1}],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["sale"]["shift_id"] is None

    def test_get_and_list(self, client, seller_headers, admin_headers, product_a, stocked, open_shift):
        created = client.post(
            "/api/sales",
            json={"payment_method": "CASH", "lines": [{"product_id": product_a.id, "quantity": 1}]},
            headers=seller_headers,
        ).json["sale"]

        fetched = client.get(f"/api/sales/{created['id']}", headers=seller_headers)
        assert fetched.json["sale"] == created

        listing = client.get(f"/api/sales?shift_id={open_shift.id}", headers=admin_headers)
        assert [s["id"] for s in listing.json["items"]] == [created["id"]]

        assert client.get("/api/sales/999999", headers=seller_headers).status_code == 404


# =============================================================================
# CLI
# =============================================================================


class TestCli:

    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        first = runner.invoke(args=["system", "init", "--location", "HQ"])
        assert "Created admin user" in first.output

        second = runner.invoke(args=["system", "init", "--location", "HQ"])
        assert "already exists" in second.output
        assert db_session.query(Location).filter_by(name="HQ").count() == 1
        assert db_session.query(User).filter_by(username="admin").one().role == "ADMIN"

    def test_users_create_and_list(self, app, location):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create", "--username", "maria", "--password", "Password123",
            "--role", "SELLER", "--location-id", str(location.id),
        ])
        assert "PASS Created user: maria" in result.output
        assert "maria" in runner.invoke(args=["users", "list"]).output

        token = get_auth_token(app.test_client(), "maria")
        assert token

    def test_stock_set(self, app, location, product_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "stock", "set", "--location-id", str(location.id), "--product-id", str(product_a.id),
            "--quantity", "40",
        ])
        assert "40 on hand" in result.output

    def test_shifts_list(self, app, open_shift):
        result = app.test_cli_runner().invoke(args=["shifts", "list", "--status", "OPEN"])
        assert "OPEN" in result.output
        assert f"{open_shift.id:<5} {open_shift.seller_id:<7}" in result.output
