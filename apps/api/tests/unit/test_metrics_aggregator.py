from datetime import timedelta

from greendrop.integrations.errors import IntegrationTimeoutError
from greendrop.models.domain import (
    DISPUTES,
    DRIVERS,
    ORDERS,
    SHOPS,
    USERS,
    VERIFICATIONS,
    normalize_order,
)
from greendrop.services.metrics_aggregator import (
    MetricsAggregator,
    MetricsInput,
    compute_samples,
    metric_segment,
    rounded_percent,
)


def _values(samples, prefix="greendrop."):
    return {sample.name.removeprefix(prefix): sample.value for sample in samples}


def test_rounded_percent_rounds_half_up():
    assert rounded_percent(1, 8) == 13
    assert rounded_percent(2, 3) == 67
    assert rounded_percent(1, 3) == 33


def test_metric_segment_sanitizes_names():
    assert metric_segment(" Casa Anfa ") == "casa_anfa"
    assert metric_segment("Rabat/Agdal") == "rabat_agdal"
    assert metric_segment("  ") == "unknown"


def test_on_time_rate_defaults_to_full_without_deliveries(now):
    data = MetricsInput(orders=[], users=[], drivers=[], verifications=[], disputes=[], shop_count=0)

    values = _values(compute_samples(data, now))

    assert values["orders.on_time_rate"] == 100
    assert values["orders.cancellation_rate"] == 0
    assert values["orders.avg_delivery_minutes"] == 0
    assert values["drivers.utilization"] == 0


def test_order_metrics(now):
    created = (now - timedelta(minutes=90)).isoformat()
    orders = [
        normalize_order(
            "o1",
            {
                "status": "delivered",
                "total": 100,
                "deliveryFee": 10,
                "createdAt": created,
                "deliveredAt": (now - timedelta(minutes=45)).isoformat(),
                "estimatedDelivery": (now - timedelta(minutes=30)).isoformat(),
                "zone": "Casa Anfa",
                "userId": "u1",
            },
        ),
        normalize_order(
            "o2",
            {
                "status": "delivered",
                "total": 50,
                "createdAt": created,
                "deliveredAt": (now - timedelta(minutes=30)).isoformat(),
                "estimatedDelivery": (now - timedelta(minutes=40)).isoformat(),
                "zone": "casa anfa",
                "userId": "u1",
            },
        ),
        normalize_order(
            "o3",
            {"status": "cancelled", "createdAt": (now - timedelta(days=3)).isoformat(), "userId": "u2"},
        ),
        normalize_order("o4", {"status": "paid", "total": 30, "createdAt": created, "userId": "u3"}),
    ]
    data = MetricsInput(orders=orders, users=[], drivers=[], verifications=[], disputes=[], shop_count=0)

    values = _values(compute_samples(data, now))

    assert values["orders.total"] == 4
    assert values["orders.today"] == 3
    assert values["orders.revenue.total"] == 180
    assert values["orders.revenue.today"] == 180
    assert values["orders.delivery_fees.total"] == 10
    assert values["orders.status.delivered"] == 2
    assert values["orders.status.shipped"] == 0
    assert values["orders.on_time_rate"] == 50
    assert values["orders.cancellation_rate"] == 25
    assert values["orders.avg_delivery_minutes"] == 52.5
    assert values["orders.unassigned"] == 1
    assert values["orders.zone.casa_anfa"] == 2
    assert values["users.active.dau"] == 2
    assert values["users.active.wau"] == 3


def test_samples_share_one_timestamp_and_interval(now):
    data = MetricsInput(orders=[], users=[], drivers=[], verifications=[], disputes=[], shop_count=2)

    samples = compute_samples(data, now, prefix="gd", interval=60)

    assert {sample.time for sample in samples} == {int(now.timestamp())}
    assert {sample.interval for sample in samples} == {60}
    assert all(sample.name.startswith("gd.") for sample in samples)
    assert _values(samples, prefix="gd.")["shops.total"] == 2


def _seed_platform(store, now):
    store.set(ORDERS, "o1", {"status": "shipped", "driverId": "d1", "createdAt": now.isoformat()})
    store.set(ORDERS, "broken", {"status": "teleported"})
    store.set(USERS, "u1", {"role": "client", "status": "verified", "createdAt": now.isoformat()})
    store.set(USERS, "u2", {"role": "driver", "createdAt": (now - timedelta(days=2)).isoformat()})
    store.set(DRIVERS, "d1", {"status": "busy", "isAvailable": False})
    store.set(DRIVERS, "d2", {"status": "online", "isAvailable": True})
    store.set(DRIVERS, "d3", {"status": "online", "isAvailable": True})
    store.set(VERIFICATIONS, "v1", {"status": "pending"})
    store.set(VERIFICATIONS, "v2", {"status": "approved"})
    store.set(DISPUTES, "disp-1", {"status": "open"})
    store.set(DISPUTES, "disp-2", {"status": "resolved"})
    store.set(SHOPS, "s1", {"name": "Epicerie Verte"})


def test_run_pushes_full_catalogue(store, sink, clock, now):
    _seed_platform(store, now)

    outcome = MetricsAggregator(store, sink, clock=clock).run()

    assert outcome.pushed is True
    assert outcome.time == int(now.timestamp())
    values = _values(sink.pushes[0])
    assert values["orders.total"] == 1
    assert values["users.total"] == 2
    assert values["users.verified"] == 1
    assert values["users.new_today"] == 1
    assert values["users.role.driver"] == 1
    assert values["drivers.total"] == 3
    assert values["drivers.busy"] == 1
    assert values["drivers.available"] == 2
    assert values["drivers.utilization"] == 33
    assert values["verifications.pending"] == 1
    assert values["disputes.open"] == 1
    assert values["disputes.total"] == 2
    assert values["shops.total"] == 1


def test_sink_failure_is_reported_not_raised(store, sink, clock, now):
    _seed_platform(store, now)
    sink.error = IntegrationTimeoutError("metrics_sink")

    outcome = MetricsAggregator(store, sink, clock=clock).run()

    assert outcome.pushed is False
    assert outcome.error["code"] == "TIMEOUT"
    assert outcome.samples
