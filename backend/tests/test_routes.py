"""
HTTP API tests.

Verifies:
- Service errors map onto 400/404/409 JSON responses
- Reservation shortfall is a 200 with an adjust-quantity message
- Payment endpoints answer with the refreshed bill summary
"""

import pytest

from unitpos.services import pair_service, reservation_service


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "healthy"
        assert data["reservation_expiry_supported"] is True

    def test_cors_for_local_frontend(self, client, db_session):
        resp = client.get("/api/system/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        resp = client.get("/api/system/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


# =============================================================================
# UNITS
# =============================================================================


class TestUnitRoutes:
    def test_create_and_lookup(self, client, db_session, variant, location):
        resp = client.post("/api/units/", json={
            "variant_id": variant.id,
            "location_id": location.id,
            "unit_code": "ac-1001 in",
        })
        assert resp.status_code == 201
        unit = resp.get_json()["unit"]
        assert unit["unit_code"] == "AC1001IN"
        assert unit["status"] == "available"

        resp = client.get("/api/units/lookup/AC-1001-IN")
        assert resp.get_json()["unit"]["id"] == unit["id"]

        resp = client.get("/api/units/lookup/NOPE")
        assert resp.status_code == 200
        assert resp.get_json()["unit"] is None

    def test_duplicate_code_conflict(self, client, db_session, variant, location, pool):
        resp = client.post("/api/units/", json={
            "variant_id": variant.id,
            "location_id": location.id,
            "unit_code": "U0001",
        })
        assert resp.status_code == 409

    @pytest.mark.parametrize("body", [
        {"location_id": 1, "unit_code": "X1"},
        {"variant_id": "1.5", "location_id": 1, "unit_code": "X1"},
        {"variant_id": True, "location_id": 1, "unit_code": "X1"},
    ])
    def test_invalid_input(self, client, db_session, body):
        resp = client.post("/api/units/", json=body)
        assert resp.status_code == 400

    def test_unknown_unit(self, client, db_session):
        assert client.get("/api/units/424242").status_code == 404

    def test_count_and_remove(self, client, db_session, variant, location, pool):
        reservation_service.reserve(variant.id, location.id, 1, "cart-1")

        resp = client.post("/api/units/remove", json={"unit_ids": pool[:3], "mode": "damage"})
        assert resp.get_json() == {"requested": 3, "removed": 2, "skipped": 1}

        resp = client.get(f"/api/units/count?variant_id={variant.id}&location_id={location.id}&status=damaged")
        assert resp.get_json()["count"] == 2

    def test_remove_requires_ids(self, client, db_session):
        assert client.post("/api/units/remove", json={}).status_code == 400


# =============================================================================
# RESERVATIONS
# =============================================================================


class TestReservationRoutes:
    def test_shortfall_is_not_an_error(self, client, db_session, variant, location, pool):
        resp = client.post("/api/reservations/", json={
            "reservation_key": "cart-1",
            "variant_id": variant.id,
            "location_id": location.id,
            "quantity": 7,
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["reserved"] == 5
        assert data["shortfall"] == 2
        assert data["message"] == "5 of 7 reserved, please adjust quantity"
        assert data["expires_at"].endswith("Z")

    def test_release_and_fulfill(self, client, db_session, variant, location, order, pool):
        reservation_service.reserve(variant.id, location.id, 2, "cart-1")

        resp = client.post("/api/reservations/cart-1/fulfill", json={})
        assert resp.status_code == 400

        resp = client.post("/api/reservations/cart-1/release")
        assert resp.get_json()["released"] == 2

        resp = client.post("/api/reservations/cart-1/fulfill", json={"order_id": order.id})
        assert resp.status_code == 200
        assert resp.get_json()["sold"] == 0

    def test_details_and_keys(self, client, db_session, variant, location, pool):
        reservation_service.reserve(variant.id, location.id, 2, "cart-1")

        assert client.get("/api/reservations/").get_json()["reservation_keys"] == ["cart-1"]
        details = client.get("/api/reservations/cart-1").get_json()
        assert details["unit_count"] == 2
        assert details["units"][0]["reservation_expires_at"] is not None

    def test_sweep(self, client, db_session, variant, location, pool):
        reservation_service.reserve(variant.id, location.id, 2, "cart-1")

        resp = client.post("/api/reservations/sweep", json={"active_keys": []})
        assert resp.status_code == 200
        assert resp.get_json()["abandoned"] == 2

        resp = client.post("/api/reservations/sweep", json={"active_keys": "cart-1"})
        assert resp.status_code == 400

    def test_direct_sale(self, client, db_session, variant, location, order, pool):
        resp = client.post("/api/reservations/sell", json={
            "variant_id": variant.id,
            "location_id": location.id,
            "quantity": 6,
            "order_id": order.id,
        })
        data = resp.get_json()
        assert data["sold"] == 5
        assert data["shortfall"] == 1


# =============================================================================
# PAIRS
# =============================================================================


class TestPairRoutes:
    def test_pair_lifecycle(self, client, db_session, order, pool):
        resp = client.post("/api/pairs/", json={
            "primary_unit_id": pool[0],
            "secondary_unit_id": pool[1],
            "combined_code": "AC-1001",
        })
        assert resp.status_code == 201
        pair_id = resp.get_json()["pair"]["id"]

        resp = client.post("/api/pairs/", json={
            "primary_unit_id": pool[0],
            "secondary_unit_id": pool[2],
            "combined_code": "AC-1002",
        })
        assert resp.status_code == 409

        resp = client.get("/api/pairs/code/AC-1001")
        assert resp.get_json()["pair"]["secondary_unit"]["id"] == pool[1]

        assert client.post(f"/api/pairs/{pair_id}/reserve", json={"reservation_key": "cart-1"}).status_code == 200
        resp = client.post(f"/api/pairs/{pair_id}/reserve", json={"reservation_key": "cart-2"})
        assert resp.status_code == 409
        assert resp.get_json()["reserved"] is False

        resp = client.post(f"/api/pairs/{pair_id}/sell", json={"order_id": order.id, "reservation_key": "cart-1"})
        assert resp.status_code == 200
        assert resp.get_json()["pair"]["status"] == "sold"

        assert client.delete(f"/api/pairs/{pair_id}").status_code == 409

    def test_unknown_pair(self, client, db_session):
        assert client.get("/api/pairs/424242").status_code == 404
        assert client.get("/api/pairs/code/NOPE").status_code == 404
        assert client.post("/api/pairs/424242/sell", json={}).status_code == 404


# =============================================================================
# AVAILABILITY
# =============================================================================


class TestAvailabilityRoute:
    def test_metrics(self, client, db_session, variant, location, other_location, pool):
        reservation_service.reserve(variant.id, location.id, 2, "cart-1")

        resp = client.post("/api/availability/", json={"pairs": [
            {"variant_id": variant.id, "location_id": location.id},
            {"variant_id": variant.id, "location_id": other_location.id},
        ]})
        assert resp.status_code == 200
        metrics = {(m["variant_id"], m["location_id"]): m for m in resp.get_json()["metrics"]}
        assert metrics[(variant.id, location.id)]["available"] == 3
        assert metrics[(variant.id, location.id)]["held"] == 2
        assert metrics[(variant.id, other_location.id)]["on_hand"] == 0

    def test_requires_pairs(self, client, db_session):
        assert client.post("/api/availability/", json={"pairs": []}).status_code == 400


# =============================================================================
# BILLS & PAYMENTS
# =============================================================================


class TestBillRoutes:
    def test_payment_flow(self, client, db_session, customer):
        resp = client.post("/api/bills/", json={"total_cents": 10000, "customer_id": customer.id})
        assert resp.status_code == 201
        bill_id = resp.get_json()["bill"]["id"]

        resp = client.post(f"/api/bills/{bill_id}/payments", json={"amount_cents": 5000})
        assert resp.status_code == 201
        summary = resp.get_json()["summary"]
        assert summary["remaining_cents"] == 5000
        assert summary["payment_status"] == "partial"

        resp = client.post(f"/api/bills/{bill_id}/payments", json={"amount_cents": 6000, "payment_method": "upi"})
        assert resp.status_code == 409
        assert "5000" in resp.get_json()["error"]

        entry_id = client.get(f"/api/bills/{bill_id}/payments").get_json()["entries"][0]["id"]
        resp = client.patch(f"/api/bills/payments/{entry_id}", json={"amount_cents": 10000})
        assert resp.get_json()["summary"]["payment_status"] == "paid"

        resp = client.post(f"/api/bills/{bill_id}/payments", json={"amount_cents": 100})
        assert resp.status_code == 409

        resp = client.delete(f"/api/bills/payments/{entry_id}")
        assert resp.get_json()["summary"]["payment_status"] == "pending"

    def test_invalid_payment_method(self, client, db_session):
        bill_id = client.post("/api/bills/", json={"total_cents": 500}).get_json()["bill"]["id"]
        resp = client.post(f"/api/bills/{bill_id}/payments", json={"amount_cents": 100, "payment_method": "barter"})
        assert resp.status_code == 400

    def test_delete_with_restock(self, client, db_session, variant, location, order, pool):
        bill_id = client.post("/api/bills/", json={"total_cents": 9000, "order_id": order.id}).get_json()["bill"]["id"]
        reservation_service.reserve(variant.id, location.id, 2, "cart-1")
        reservation_service.fulfill("cart-1", order_id=order.id, bill_id=bill_id)

        resp = client.delete(f"/api/bills/{bill_id}?restock=1")
        assert resp.status_code == 200
        assert resp.get_json()["restocked"] == 2
        assert client.get(f"/api/bills/{bill_id}").status_code == 404

    def test_unknown_bill(self, client, db_session):
        assert client.get("/api/bills/424242/payments").status_code == 404
        assert client.post("/api/bills/424242/payments", json={"amount_cents": 1}).status_code == 404


# =============================================================================
# CATALOG & MOVEMENTS
# =============================================================================


class TestCatalogAndMovements:
    def test_catalog_listings(self, client, db_session, variant, location):
        variants = client.get("/api/catalog/variants").get_json()["variants"]
        assert [v["sku"] for v in variants] == ["AC-15-INV"]
        locations = client.get("/api/catalog/locations").get_json()["locations"]
        assert [loc["code"] for loc in locations] == ["MAIN"]

    def test_movements(self, client, db_session, variant, location):
        client.post("/api/units/", json={"variant_id": variant.id, "location_id": location.id, "unit_code": "M1"})
        movements = client.get(f"/api/movements/?variant_id={variant.id}").get_json()["movements"]
        assert len(movements) == 1
        assert movements[0]["reference_type"] == "intake"
        assert movements[0]["unit_codes"] == ["M1"]
