"""API surface tests: JSON in, JSON out, error mapping."""

import pytest


ACTOR = {"X-User-Id": "1"}


@pytest.fixture
def stocked(db_session, outlet, warehouse, product, make_lot):
    make_lot(product, outlet, 5, day=1, batch_number="B-1")
    make_lot(product, outlet, 10, day=2, batch_number="B-2")
    return product


def _loc(location):
    return location.to_dict()


class TestSalesRoutes:

    def test_create_sale(self, client, stocked, outlet):
        resp = client.post(
            "/api/sales/",
            json={
                "location": _loc(outlet),
                "items": [{"product_id": stocked.id, "quantity": 7, "unit_price_cents": 1000}],
                "payment_method": "CASH",
            },
            headers=ACTOR,
        )

        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["sale_number"].startswith("S")
        assert sale["total_cents"] == 7000
        assert sale["created_by_user_id"] == 1
        assert [lot["quantity"] for lot in sale["lines"][0]["lots"]] == [5, 2]
        assert sale["payments"] == [{"method": "CASH", "amount_cents": 7000}]

    def test_actor_header_required(self, client, stocked, outlet):
        resp = client.post(
            "/api/sales/",
            json={"location": _loc(outlet), "items": [{"product_id": stocked.id, "quantity": 1}]},
        )

        assert resp.status_code == 401

    def test_insufficient_stock_is_409(self, client, stocked, outlet):
        resp = client.post(
            "/api/sales/",
            json={"location": _loc(outlet), "items": [{"product_id": stocked.id, "quantity": 99}]},
            headers=ACTOR,
        )

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["details"]["available"] == 15
        assert body["details"]["requested"] == 99

    def test_validation_error_is_400(self, client, stocked, outlet):
        resp = client.post("/api/sales/", json={"location": _loc(outlet), "items": []}, headers=ACTOR)

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "items are required"

    def test_non_ascii_actor_header_is_401(self, client, stocked, outlet):
        resp = client.post(
            "/api/sales/",
            json={"location": _loc(outlet), "items": [{"product_id": stocked.id, "quantity": 1}]},
            headers={"X-User-Id": "\u00b2"},
        )

        assert resp.status_code == 401

    def test_bad_location_kind_is_400(self, client, stocked):
        resp = client.post(
            "/api/sales/",
            json={"location": {"kind": "SHOP", "id": 1}, "items": [{"product_id": stocked.id, "quantity": 1}]},
            headers=ACTOR,
        )

        assert resp.status_code == 400

    def test_get_list_and_return(self, client, stocked, outlet):
        created = client.post(
            "/api/sales/",
            json={
                "location": _loc(outlet),
                "items": [{"product_id": stocked.id, "quantity": 2, "unit_price_cents": 1000}],
            },
            headers=ACTOR,
        ).get_json()["sale"]
        sale_number = created["sale_number"]
        lot_id = created["lines"][0]["lots"][0]["lot_id"]

        assert client.get(f"/api/sales/{sale_number}").status_code == 200
        assert client.get("/api/sales/S0000000000").status_code == 404

        listed = client.get(f"/api/sales/?location_kind=OUTLET&location_id={outlet.id}").get_json()
        assert listed["total"] == 1
        assert "lines" not in listed["items"][0]

        resp = client.post(
            f"/api/sales/{sale_number}/returns",
            json={"items": [{"lot_id": lot_id, "quantity": 1, "reason": "Expired"}]},
            headers=ACTOR,
        )
        assert resp.status_code == 201
        assert resp.get_json()["return"]["refund_cents"] == 1000

        over = client.post(
            f"/api/sales/{sale_number}/returns",
            json={"items": [{"lot_id": lot_id, "quantity": 2}]},
            headers=ACTOR,
        )
        assert over.status_code == 400


class TestStockRoutes:

    def test_receive_and_list_lots(self, client, db_session, product, warehouse):
        resp = client.post(
            "/api/stock/lots",
            json={
                "product_id": product.id,
                "location": _loc(warehouse),
                "quantity": 12,
                "unit_cost_cents": 400,
                "unit_price_cents": 650,
                "batch_number": "B-9",
                "expires_on": "2026-01-31",
            },
            headers=ACTOR,
        )

        assert resp.status_code == 201
        lot = resp.get_json()["lot"]
        assert lot["quantity"] == 12
        assert lot["expires_on"] == "2026-01-31"
        assert lot["location"] == {"kind": "WAREHOUSE", "id": warehouse.id}

        lots = client.get(f"/api/stock/lots?product_id={product.id}").get_json()["lots"]
        assert [l["id"] for l in lots] == [lot["id"]]

    def test_transfer_and_movements(self, client, stocked, outlet, warehouse):
        resp = client.post(
            "/api/stock/transfers",
            json={"product_id": stocked.id, "from": _loc(outlet), "to": _loc(warehouse), "quantity": 6},
            headers=ACTOR,
        )

        assert resp.status_code == 201
        moved = resp.get_json()["transferred"]
        assert [(m["batch_number"], m["quantity_transferred"]) for m in moved] == [("B-1", 5), ("B-2", 1)]

        history = client.get("/api/stock/movements?movement_type=TRANSFER_IN").get_json()
        assert history["total"] == 2
        assert all(item["location"]["kind"] == "WAREHOUSE" for item in history["items"])

        assert client.get("/api/stock/movements?movement_type=LOST").status_code == 400

    def test_transfer_insufficient(self, client, stocked, outlet, warehouse):
        resp = client.post(
            "/api/stock/transfers",
            json={"product_id": stocked.id, "from": _loc(outlet), "to": _loc(warehouse), "quantity": 50},
            headers=ACTOR,
        )

        assert resp.status_code == 409


class TestDemandRoutes:

    def test_generate_list_approve_convert(self, client, stocked, outlet, warehouse):
        client.post(
            "/api/sales/",
            json={
                "location": _loc(outlet),
                "items": [{"product_id": stocked.id, "quantity": 9, "unit_price_cents": 100}],
            },
            headers=ACTOR,
        )

        resp = client.post(
            "/api/demands/generate",
            json={"strategy": "simple", "location": _loc(outlet), "days": 30},
            headers=ACTOR,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["generated_count"] == 1
        demand = body["demands"][0]
        # 9 units / 30 days * 7 = 2.1
        assert demand["quantity"] == 3
        assert body["analysis"]["strategy"] == "simple"

        listed = client.get("/api/demands/?status=pending").get_json()
        assert listed["total"] == 1

        approved = client.patch(f"/api/demands/{demand['id']}/status", json={"status": "approved"}, headers=ACTOR)
        assert approved.status_code == 200
        assert approved.get_json()["demand"]["status"] == "approved"

        converted = client.post(
            f"/api/demands/{demand['id']}/convert",
            json={"warehouse_id": warehouse.id, "unit_cost_cents": 60, "unit_price_cents": 100},
            headers=ACTOR,
        )
        assert converted.status_code == 200
        assert converted.get_json()["lot"]["quantity"] == 3

    def test_unknown_strategy(self, client, db_session):
        resp = client.post("/api/demands/generate", json={"strategy": "magic"}, headers=ACTOR)

        assert resp.status_code == 400
        assert resp.get_json()["details"]["allowed"] == ["enhanced", "simple"]

    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_parameter_is_400(self, client, stocked, outlet, raw):
        resp = client.post(
            "/api/demands/generate",
            data=f'{{"strategy": "enhanced", "seasonal_adjustment": {raw}}}',
            content_type="application/json",
            headers=ACTOR,
        )

        assert resp.status_code == 400
        assert "finite" in resp.get_json()["error"]
