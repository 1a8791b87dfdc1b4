from greendrop.models.domain import DRIVERS, ORDERS

PICKUP_QUERY = {"lat": 33.5731, "lng": -7.5898}


def test_candidates_are_ranked_by_score(client, online_driver):
    online_driver("far", lat=33.6200, lng=-7.5200)
    online_driver("near", lat=33.5735, lng=-7.5899)
    online_driver("off", lat=33.5731, lng=-7.5898, status="offline")
    online_driver("out-of-range", lat=34.0209, lng=-6.8416)

    response = client.get("/api/v1/dispatch/candidates", params=PICKUP_QUERY)

    assert response.status_code == 200
    candidates = response.json()["candidates"]
    assert [item["driver_id"] for item in candidates] == ["near", "far"]
    assert candidates[0]["distance_km"] < 0.1
    assert candidates[0]["score"] > candidates[1]["score"]


def test_candidates_respect_max_results(client, online_driver):
    online_driver("d1")
    online_driver("d2", lat=33.5760)

    response = client.get("/api/v1/dispatch/candidates", params={**PICKUP_QUERY, "max_results": 1})

    assert len(response.json()["candidates"]) == 1


def test_candidates_reject_invalid_coordinates(client):
    response = client.get("/api/v1/dispatch/candidates", params={"lat": 120, "lng": 0})

    assert response.status_code == 422


def test_rematch_assigns_unassigned_order(client, sql_store, online_driver, stored_order):
    stored_order("order-1", status="confirmed")
    online_driver("d1")

    response = client.post("/api/v1/dispatch/orders/order-1/match")

    assert response.status_code == 200
    assert response.json() == {
        "order_id": "order-1",
        "assigned": True,
        "already_assigned": False,
        "driver_id": "d1",
        "driver_name": "Driver d1",
    }
    assert sql_store.get(ORDERS, "order-1")["driverId"] == "d1"
    assert sql_store.get(DRIVERS, "d1")["status"] == "busy"


def test_rematch_reports_existing_assignment(client, online_driver, stored_order):
    stored_order("order-1", driverId="d9", driverName="Rachid")
    online_driver("d1")

    response = client.post("/api/v1/dispatch/orders/order-1/match")

    assert response.json()["already_assigned"] is True
    assert response.json()["driver_id"] == "d9"


def test_rematch_without_candidates_leaves_order_unassigned(client, sql_store, stored_order):
    stored_order("order-1")

    response = client.post("/api/v1/dispatch/orders/order-1/match")

    assert response.status_code == 200
    assert response.json()["assigned"] is False
    assert sql_store.get(ORDERS, "order-1").get("driverId") is None


def test_rematch_unknown_order_is_not_found(client):
    response = client.post("/api/v1/dispatch/orders/missing/match")

    assert response.status_code == 404


def test_rematch_terminal_order_is_a_conflict(client, stored_order):
    stored_order("order-1", status="cancelled")

    response = client.post("/api/v1/dispatch/orders/order-1/match")

    assert response.status_code == 409


def test_rematch_without_pickup_is_unprocessable(client, stored_order):
    stored_order("order-1", pickupLocation=None)

    response = client.post("/api/v1/dispatch/orders/order-1/match")

    assert response.status_code == 422


def test_rematch_malformed_order_is_unprocessable(client, sql_store, online_driver, stored_order):
    online_driver("d1")
    stored_order("order-1", status="lost")

    response = client.post("/api/v1/dispatch/orders/order-1/match")

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "MALFORMED_DOCUMENT"
    assert sql_store.get(DRIVERS, "d1")["currentOrderId"] is None
