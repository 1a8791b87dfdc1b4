import logging
import re
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from greendrop.config import platform_tz, settings
from greendrop.integrations.errors import IntegrationError
from greendrop.integrations.metrics_sink_client import MetricsSinkProtocol
from greendrop.models.domain import (
    DISPUTES,
    DRIVERS,
    ORDERS,
    SHOPS,
    USERS,
    VERIFICATIONS,
    Driver,
    DriverStatus,
    MetricSample,
    Order,
    OrderStatus,
    UserProfile,
    normalize_driver,
    normalize_many,
    normalize_order,
    normalize_user,
    now_utc,
)
from greendrop.observability import log_event, metrics_store, observe_timing
from greendrop.services.store import DocumentStore

_UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9_-]+")


def rounded_percent(part: int, whole: int) -> int:
    """Half-up integer percentage; callers guard ``whole == 0``."""
    return int(part * 100 / whole + 0.5)


def metric_segment(value: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", value.strip().lower()) or "unknown"


@dataclass
class MetricsInput:
    orders: list[Order]
    users: list[UserProfile]
    drivers: list[Driver]
    verifications: list[dict[str, Any]]
    disputes: list[dict[str, Any]]
    shop_count: int


@dataclass
class MetricsPushOutcome:
    time: int
    samples: list[MetricSample] = field(default_factory=list)
    pushed: bool = False
    error: dict | None = None


def compute_samples(
    data: MetricsInput,
    now: datetime,
    prefix: str = "greendrop",
    interval: int = 300,
) -> list[MetricSample]:
    timestamp = int(now.timestamp())
    today_start = now.astimezone(platform_tz()).replace(hour=0, minute=0, second=0, microsecond=0)
    values: dict[str, float] = {}

    orders = data.orders
    today_orders = [order for order in orders if order.created_at and order.created_at >= today_start]
    delivered = [order for order in orders if order.status == OrderStatus.DELIVERED]
    by_status = Counter(order.status.value for order in orders)

    values["orders.total"] = len(orders)
    values["orders.today"] = len(today_orders)
    values["orders.revenue.total"] = sum(order.total for order in orders)
    values["orders.revenue.today"] = sum(order.total for order in today_orders)
    values["orders.delivery_fees.total"] = sum(order.delivery_fee for order in orders)
    for status in OrderStatus:
        values[f"orders.status.{status.value}"] = by_status.get(status.value, 0)

    on_time = sum(
        1
        for order in delivered
        if order.delivered_at and order.estimated_delivery
        and order.delivered_at <= order.estimated_delivery
    )
    values["orders.on_time_rate"] = rounded_percent(on_time, len(delivered)) if delivered else 100
    values["orders.cancellation_rate"] = (
        rounded_percent(by_status.get(OrderStatus.CANCELLED.value, 0), len(orders)) if orders else 0
    )

    durations = [
        (order.delivered_at - order.created_at).total_seconds() / 60
        for order in delivered
        if order.delivered_at and order.created_at
    ]
    values["orders.avg_delivery_minutes"] = round(sum(durations) / len(durations), 1) if durations else 0
    values["orders.unassigned"] = sum(
        1 for order in orders if not order.is_terminal and not order.driver_id
    )
    for zone, count in Counter(metric_segment(order.zone) for order in orders if order.zone).items():
        values[f"orders.zone.{zone}"] = count

    users = data.users
    values["users.total"] = len(users)
    values["users.verified"] = sum(1 for user in users if user.status == "verified")
    values["users.new_today"] = sum(
        1 for user in users if user.created_at and user.created_at >= today_start
    )
    for role, count in Counter(metric_segment(user.role) for user in users if user.role).items():
        values[f"users.role.{role}"] = count
    for label, window in (("dau", timedelta(days=1)), ("wau", timedelta(days=7)), ("mau", timedelta(days=30))):
        since = now - window
        values[f"users.active.{label}"] = len(
            {
                order.user_id
                for order in orders
                if order.user_id and order.created_at and order.created_at >= since
            }
        )

    drivers = data.drivers
    by_driver_status = Counter(driver.status for driver in drivers)
    online = by_driver_status.get(DriverStatus.ONLINE, 0)
    busy = by_driver_status.get(DriverStatus.BUSY, 0)
    values["drivers.total"] = len(drivers)
    for status in DriverStatus:
        values[f"drivers.{status.value}"] = by_driver_status.get(status, 0)
    values["drivers.available"] = sum(1 for driver in drivers if driver.is_available)
    values["drivers.utilization"] = rounded_percent(busy, online + busy) if online + busy else 0

    verification_status = Counter(item.get("status") for item in data.verifications)
    for status in ("pending", "approved", "rejected"):
        values[f"verifications.{status}"] = verification_status.get(status, 0)

    values["disputes.open"] = sum(1 for item in data.disputes if item.get("status") == "open")
    values["disputes.total"] = len(data.disputes)
    values["shops.total"] = data.shop_count

    return [
        MetricSample(name=f"{prefix}.{name}", value=value, interval=interval, time=timestamp)
        for name, value in values.items()
    ]


class MetricsAggregator:
    def __init__(
        self,
        store: DocumentStore,
        sink: MetricsSinkProtocol,
        clock: Callable[[], datetime] = now_utc,
        prefix: str | None = None,
        interval: int | None = None,
    ) -> None:
        self.store = store
        self.sink = sink
        self.clock = clock
        self.prefix = prefix or settings.metrics_prefix
        self.interval = interval or settings.schedule_interval_s

    def collect(self) -> MetricsInput:
        return MetricsInput(
            orders=normalize_many(self.store.query(ORDERS), normalize_order, "order"),
            users=normalize_many(self.store.query(USERS), normalize_user, "user"),
            drivers=normalize_many(self.store.query(DRIVERS), normalize_driver, "driver"),
            verifications=[snapshot.data for snapshot in self.store.query(VERIFICATIONS)],
            disputes=[snapshot.data for snapshot in self.store.query(DISPUTES)],
            shop_count=len(self.store.query(SHOPS)),
        )

    def run(self) -> MetricsPushOutcome:
        now = self.clock()
        metrics_store.increment("metrics_push_runs_total")
        with observe_timing("metrics_aggregation_seconds"):
            samples = compute_samples(self.collect(), now, self.prefix, self.interval)

        outcome = MetricsPushOutcome(time=int(now.timestamp()), samples=samples)
        try:
            outcome.pushed = self.sink.push(samples)
        except IntegrationError as err:
            outcome.error = err.detail()
            metrics_store.increment("integration_failure_total")
            log_event("metrics_push_failed", level=logging.ERROR, error=str(err))
            return outcome

        if outcome.pushed:
            log_event(f"metrics_pushed:{len(samples)}")
        return outcome
