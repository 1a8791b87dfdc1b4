from datetime import datetime, timezone

import pytest

from greendrop.models.domain import DRIVERS, ORDERS

PICKUP = {"lat": 33.5731, "lng": -7.5898}


@pytest.fixture
def online_driver(sql_store):
    def _create(driver_id: str, lat: float = 33.5750, lng: float = -7.5900, **overrides) -> None:
        doc = {
            "name": f"Driver {driver_id}",
            "phone": "+212600000000",
            "status": "online",
            "isAvailable": True,
            "currentOrderId": None,
            "rating": 4.8,
            "completedDeliveries": 40,
            "location": {"lat": lat, "lng": lng},
            "lastSeenAt": datetime.now(timezone.utc).isoformat(),
        }
        doc.update(overrides)
        sql_store.set(DRIVERS, driver_id, doc)

    return _create


@pytest.fixture
def stored_order(sql_store):
    def _create(order_id: str, **overrides) -> dict:
        doc = {
            "status": "created",
            "userId": "client-1",
            "userName": "Salma",
            "items": [{"name": "Olive oil"}],
            "total": 85.0,
            "pickupLocation": PICKUP,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }
        doc.update(overrides)
        sql_store.set(ORDERS, order_id, doc)
        return doc

    return _create
