"""Platform health rules, alert deduplication and alert fan-out.

One run scans drivers, orders, disputes, verifications and users, evaluates every rule
independently, drops alerts already recorded in alert history inside the dedup window,
then delivers the rest: webhook, in-app notifications plus alert history (one batch),
and finally an admin push. Webhook and push failures are reported in the outcome but
never stop the history write.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from greendrop.config import platform_tz, settings
from greendrop.integrations.alert_webhook_client import AlertWebhookProtocol
from greendrop.integrations.errors import IntegrationError
from greendrop.integrations.push_client import PushClientProtocol
from greendrop.models.domain import (
    ADMIN_ROLES,
    ADMIN_TARGET,
    ALERT_HISTORY,
    DISPUTES,
    DRIVERS,
    NOTIFICATIONS,
    ORDERS,
    USERS,
    VERIFICATIONS,
    Alert,
    AlertHistoryEntry,
    AlertSeverity,
    Driver,
    DriverStatus,
    NotificationRecord,
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
from greendrop.services.metrics_aggregator import rounded_percent
from greendrop.services.store import DocumentStore, Filter, StoreError


@dataclass(frozen=True)
class HealthThresholds:
    driver_utilization_pct: int = 90
    open_disputes_max: int = 10
    pending_verifications_max: int = 20
    on_time_rate_min_pct: int = 80
    on_time_min_samples: int = 5
    zero_revenue_hour: int = 12
    zero_revenue_min_orders: int = 10
    stale_shipped_s: int = 2 * 60 * 60
    no_signups_hour: int = 18
    no_signups_min_users: int = 20


def thresholds_from_settings() -> HealthThresholds:
    return HealthThresholds(
        driver_utilization_pct=settings.health_driver_utilization_pct,
        open_disputes_max=settings.health_open_disputes_max,
        pending_verifications_max=settings.health_pending_verifications_max,
        on_time_rate_min_pct=settings.health_on_time_rate_min_pct,
        on_time_min_samples=settings.health_on_time_min_samples,
        zero_revenue_hour=settings.health_zero_revenue_hour,
        zero_revenue_min_orders=settings.health_zero_revenue_min_orders,
        stale_shipped_s=settings.health_stale_shipped_s,
        no_signups_hour=settings.health_no_signups_hour,
        no_signups_min_users=settings.health_no_signups_min_users,
    )


@dataclass
class PlatformSnapshot:
    drivers: list[Driver]
    orders: list[Order]
    users: list[UserProfile]
    open_disputes: int
    pending_verifications: int


@dataclass
class HealthCheckOutcome:
    evaluated_at: datetime
    raised: list[str] = field(default_factory=list)
    sent: list[str] = field(default_factory=list)
    suppressed: list[str] = field(default_factory=list)
    webhook_delivered: bool = False
    push_delivered: bool = False
    delivery_errors: list[dict] = field(default_factory=list)


def evaluate_rules(
    snapshot: PlatformSnapshot,
    now: datetime,
    thresholds: HealthThresholds | None = None,
) -> list[Alert]:
    t = thresholds or HealthThresholds()
    local_now = now.astimezone(platform_tz())
    today_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    alerts: list[Alert] = []

    online = sum(1 for driver in snapshot.drivers if driver.status == DriverStatus.ONLINE)
    busy = sum(1 for driver in snapshot.drivers if driver.status == DriverStatus.BUSY)
    active = online + busy

    if active == 0 and snapshot.drivers:
        alerts.append(
            Alert(
                id="no-drivers-online",
                severity=AlertSeverity.CRITICAL,
                title="No drivers online",
                message=f"0 active drivers out of {len(snapshot.drivers)}. Orders cannot be delivered.",
                team="operations",
            )
        )

    if active > 0:
        utilization = rounded_percent(busy, active)
        if utilization > t.driver_utilization_pct:
            alerts.append(
                Alert(
                    id="driver-overload",
                    severity=AlertSeverity.WARNING,
                    title="Drivers overloaded",
                    message=f"Utilization at {utilization}% ({busy} busy / {active} active). Delays likely.",
                    team="operations",
                )
            )

    if snapshot.open_disputes > t.open_disputes_max:
        alerts.append(
            Alert(
                id="high-disputes",
                severity=AlertSeverity.CRITICAL,
                title="Too many open disputes",
                message=f"{snapshot.open_disputes} open disputes need immediate attention.",
                team="support",
            )
        )

    if snapshot.pending_verifications > t.pending_verifications_max:
        alerts.append(
            Alert(
                id="kyc-backlog",
                severity=AlertSeverity.WARNING,
                title="Verification backlog",
                message=f"{snapshot.pending_verifications} verifications pending review.",
                team="compliance",
            )
        )

    delivered = [order for order in snapshot.orders if order.status == OrderStatus.DELIVERED]
    if len(delivered) > t.on_time_min_samples:
        on_time = sum(
            1
            for order in delivered
            if order.delivered_at and order.estimated_delivery
            and order.delivered_at <= order.estimated_delivery
        )
        on_time_rate = rounded_percent(on_time, len(delivered))
        if on_time_rate < t.on_time_rate_min_pct:
            alerts.append(
                Alert(
                    id="low-delivery-rate",
                    severity=AlertSeverity.WARNING,
                    title="Low on-time delivery rate",
                    message=(
                        f"Only {on_time_rate}% of deliveries on time "
                        f"(threshold {t.on_time_rate_min_pct}%)."
                    ),
                    team="operations",
                )
            )

    today_revenue = sum(
        order.total for order in snapshot.orders if order.created_at and order.created_at >= today_start
    )
    if (
        local_now.hour >= t.zero_revenue_hour
        and today_revenue == 0
        and len(snapshot.orders) > t.zero_revenue_min_orders
    ):
        alerts.append(
            Alert(
                id="zero-revenue",
                severity=AlertSeverity.WARNING,
                title="No revenue today",
                message=f"No revenue recorded after {t.zero_revenue_hour}:00. Check the payment flow.",
                team="business",
            )
        )

    stale_cutoff = now - timedelta(seconds=t.stale_shipped_s)
    stale_shipped = 0
    for order in snapshot.orders:
        if order.status != OrderStatus.SHIPPED:
            continue
        shipped_at = order.shipped_at or order.updated_at
        if shipped_at and shipped_at < stale_cutoff:
            stale_shipped += 1
    if stale_shipped:
        alerts.append(
            Alert(
                id="stale-deliveries",
                severity=AlertSeverity.WARNING,
                title="Stuck deliveries",
                message=(
                    f'{stale_shipped} order(s) in "shipped" for more than '
                    f"{t.stale_shipped_s // 3600}h. Possible driver issue."
                ),
                team="operations",
            )
        )

    new_users_today = sum(
        1 for user in snapshot.users if user.created_at and user.created_at >= today_start
    )
    if (
        local_now.hour >= t.no_signups_hour
        and new_users_today == 0
        and len(snapshot.users) > t.no_signups_min_users
    ):
        alerts.append(
            Alert(
                id="no-signups",
                severity=AlertSeverity.INFO,
                title="No signups today",
                message=f"No new signups after {t.no_signups_hour}:00. Check acquisition channels.",
                team="growth",
            )
        )

    return alerts


class HealthMonitor:
    def __init__(
        self,
        store: DocumentStore,
        webhook: AlertWebhookProtocol,
        push: PushClientProtocol,
        clock: Callable[[], datetime] = now_utc,
        thresholds: HealthThresholds | None = None,
        dedup_window_s: int | None = None,
    ) -> None:
        self.store = store
        self.webhook = webhook
        self.push = push
        self.clock = clock
        self.thresholds = thresholds or thresholds_from_settings()
        self.dedup_window_s = settings.alert_dedup_window_s if dedup_window_s is None else dedup_window_s

    def collect_snapshot(self) -> PlatformSnapshot:
        return PlatformSnapshot(
            drivers=normalize_many(self.store.query(DRIVERS), normalize_driver, "driver"),
            orders=normalize_many(self.store.query(ORDERS), normalize_order, "order"),
            users=normalize_many(self.store.query(USERS), normalize_user, "user"),
            open_disputes=len(self.store.query(DISPUTES, Filter("status", "==", "open"))),
            pending_verifications=len(
                self.store.query(VERIFICATIONS, Filter("status", "==", "pending"))
            ),
        )

    def recently_sent(self, now: datetime) -> set[str]:
        since = now - timedelta(seconds=self.dedup_window_s)
        history = self.store.query(ALERT_HISTORY, Filter("sentAt", ">=", since))
        return {snapshot.data.get("alertId") for snapshot in history}

    def run(self) -> HealthCheckOutcome:
        now = self.clock()
        outcome = HealthCheckOutcome(evaluated_at=now)
        metrics_store.increment("health_check_runs_total")

        with observe_timing("health_check_seconds"):
            alerts = evaluate_rules(self.collect_snapshot(), now, self.thresholds)
        outcome.raised = [alert.id for alert in alerts]
        if not alerts:
            log_event("health_check_nominal")
            return outcome

        recent = self.recently_sent(now)
        fresh = [alert for alert in alerts if alert.id not in recent]
        outcome.suppressed = [alert.id for alert in alerts if alert.id in recent]
        if outcome.suppressed:
            metrics_store.increment("alerts_suppressed_total", len(outcome.suppressed))
        if not fresh:
            log_event("health_check_alerts_already_sent")
            return outcome

        try:
            outcome.webhook_delivered = self.webhook.send_alerts(fresh, now)
        except IntegrationError as err:
            self._record_delivery_failure(outcome, err)

        self._record_alerts(fresh, now)
        outcome.sent = [alert.id for alert in fresh]
        metrics_store.increment("alerts_sent_total", len(fresh))

        try:
            outcome.push_delivered = self.push.send_alert_summary(self.admin_tokens(), fresh)
        except IntegrationError as err:
            self._record_delivery_failure(outcome, err)
        except StoreError as exc:
            # Alerts are already recorded; a token lookup failure only loses the push.
            self._record_delivery_failure(
                outcome,
                IntegrationError(
                    service="push_gateway",
                    code="TOKEN_LOOKUP_FAILED",
                    message=str(exc),
                    retryable=True,
                ),
            )

        for alert in fresh:
            log_event(
                f"health_alert_{alert.severity.value}",
                level=logging.WARNING if alert.is_critical else logging.INFO,
                alert_id=alert.id,
            )
        return outcome

    def admin_tokens(self) -> list[str]:
        admins = normalize_many(
            self.store.query(USERS, Filter("role", "in", list(ADMIN_ROLES))),
            normalize_user,
            "user",
        )
        tokens: list[str] = []
        for admin in admins:
            for token in admin.fcm_tokens:
                if token not in tokens:
                    tokens.append(token)
        return tokens

    def _record_alerts(self, alerts: list[Alert], now: datetime) -> None:
        run_key = int(now.timestamp())
        batch = self.store.batch()
        for alert in alerts:
            notification = NotificationRecord(
                target=ADMIN_TARGET,
                category="monitoring",
                type="alert" if alert.is_critical else "warning",
                title=f"[{alert.severity.value.upper()}] {alert.title}",
                message=alert.message,
                timestamp=now,
            )
            batch.set(NOTIFICATIONS, f"alert_{alert.id}_{run_key}", notification.to_document())

            history = AlertHistoryEntry(
                alert_id=alert.id,
                severity=alert.severity,
                title=alert.title,
                message=alert.message,
                team=alert.team,
                sent_at=now,
            )
            batch.set(ALERT_HISTORY, f"{alert.id}_{run_key}", history.to_document())
        batch.commit()

    def _record_delivery_failure(self, outcome: HealthCheckOutcome, err: IntegrationError) -> None:
        outcome.delivery_errors.append(err.detail())
        metrics_store.increment("integration_failure_total")
        log_event(f"{err.service}_delivery_failed", level=logging.ERROR, error=str(err))
