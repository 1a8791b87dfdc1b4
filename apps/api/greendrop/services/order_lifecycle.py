"""Side effects of order creation and order status transitions.

Creation runs its steps independently so a failing log or notification write never
prevents driver matching. Status changes are applied as one batch so the order's log,
notifications and driver release land together or not at all.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from greendrop.config import settings
from greendrop.models.domain import (
    ACTIVITY_LOGS,
    ADMIN_TARGET,
    DRIVERS,
    NOTIFICATIONS,
    ORDERS,
    ActivityLogEntry,
    DriverStatus,
    NotificationRecord,
    Order,
    OrderStatus,
    TimelineEntry,
    normalize_order,
    now_utc,
)
from greendrop.observability import log_event, metrics_store
from greendrop.services.driver_matching import DriverMatcher
from greendrop.services.state_machine import InvalidTransitionError, ensure_valid_transition
from greendrop.services.store import DocumentStore, PreconditionFailedError, StoreError


class SideEffectError(Exception):
    retryable = True

    def __init__(self, order_id: str, failed_steps: list[str]) -> None:
        super().__init__(f"Order {order_id} side effects failed: {', '.join(failed_steps)}")
        self.order_id = order_id
        self.failed_steps = failed_steps


@dataclass
class OrderCreatedOutcome:
    order_id: str
    assigned_driver_id: str | None = None
    failed_steps: list[str] = field(default_factory=list)


@dataclass
class StatusChangeOutcome:
    order_id: str
    applied: bool
    from_status: str | None = None
    to_status: str | None = None
    writes: int = 0
    released_driver_id: str | None = None
    notified_driver_id: str | None = None


class OrderLifecycle:
    def __init__(
        self,
        store: DocumentStore,
        matcher: DriverMatcher,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.matcher = matcher
        self.clock = clock

    # -- creation -----------------------------------------------------------------

    def on_order_created(self, order_id: str, data: dict[str, Any]) -> OrderCreatedOutcome:
        order = normalize_order(order_id, data)
        now = self.clock()
        outcome = OrderCreatedOutcome(order_id=order_id)
        log_event("order_created", order_id=order_id, user_id=order.user_id)

        steps: tuple[tuple[str, Callable[[Order, datetime], None]], ...] = (
            ("activity_log", self._log_creation),
            ("timeline", self._init_timeline),
            ("admin_notification", self._notify_admin_new_order),
        )
        for name, step in steps:
            try:
                step(order, now)
            except StoreError as exc:
                outcome.failed_steps.append(name)
                metrics_store.increment("order_side_effect_failure_total")
                log_event(
                    f"order_created_{name}_failed",
                    level=logging.ERROR,
                    order_id=order_id,
                    error=str(exc),
                )

        try:
            outcome.assigned_driver_id = self._match_driver(order)
        except StoreError as exc:
            outcome.failed_steps.append("driver_matching")
            metrics_store.increment("order_side_effect_failure_total")
            log_event(
                "order_created_driver_matching_failed",
                level=logging.ERROR,
                order_id=order_id,
                error=str(exc),
            )

        if outcome.failed_steps:
            raise SideEffectError(order_id, outcome.failed_steps)
        return outcome

    def _log_creation(self, order: Order, now: datetime) -> None:
        entry = ActivityLogEntry(
            entity_type="order",
            entity_id=order.id,
            type="order_created",
            message=f"New order created by user {order.user_name or order.user_id}",
            user_id=order.user_id,
            metadata={
                "total": order.total,
                "itemCount": order.item_count,
                "status": order.status.value,
            },
            created_at=now,
        )
        self.store.set(ACTIVITY_LOGS, f"order_created_{order.id}", entry.to_document())

    def _init_timeline(self, order: Order, now: datetime) -> None:
        stored = self.store.get(ORDERS, order.id)
        if stored is None or stored.get("timeline"):
            return

        entry = TimelineEntry(
            id=f"event_{int(now.timestamp() * 1000)}",
            title="Order created",
            description="Order has been successfully placed",
            timestamp=now,
        )
        try:
            self.store.update(
                ORDERS,
                order.id,
                {"timeline": [entry.to_document()]},
                expected={"timeline": stored.get("timeline")},
            )
        except PreconditionFailedError:
            log_event("order_timeline_already_initialized", order_id=order.id)

    def _notify_admin_new_order(self, order: Order, now: datetime) -> None:
        notification = NotificationRecord(
            target=ADMIN_TARGET,
            category="order",
            type="info",
            title="New order",
            message=(
                f"Order #{order.short_ref} - {order.item_count} item(s), "
                f"{order.total:g} {settings.currency}"
            ),
            order_id=order.id,
            timestamp=now,
        )
        self.store.set(NOTIFICATIONS, f"order_created_{order.id}_admin", notification.to_document())

    def _match_driver(self, order: Order) -> str | None:
        if order.pickup_location is None:
            log_event("order_missing_pickup_location", level=logging.WARNING, order_id=order.id)
            return None

        stored = self.store.get(ORDERS, order.id)
        if stored is None:
            log_event("order_missing_at_match", level=logging.WARNING, order_id=order.id)
            return None
        # Redelivered creation events must not assign a second driver.
        if stored.get("driverId"):
            return stored["driverId"]
        if stored.get("status") in {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}:
            return None

        driver = self.matcher.auto_assign_driver(
            order.id, order.pickup_location.lat, order.pickup_location.lng
        )
        return driver.id if driver else None

    # -- transitions --------------------------------------------------------------

    def on_order_status_change(
        self,
        order_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> StatusChangeOutcome:
        old = normalize_order(order_id, before)
        new = normalize_order(order_id, after)

        if old.status == new.status:
            return StatusChangeOutcome(order_id=order_id, applied=False)

        try:
            ensure_valid_transition(old.status, new.status)
        except InvalidTransitionError as exc:
            metrics_store.increment("order_transition_rejected_total")
            log_event(
                "order_transition_rejected",
                level=logging.WARNING,
                order_id=order_id,
                error=str(exc),
            )
            raise

        now = self.clock()
        outcome = StatusChangeOutcome(
            order_id=order_id,
            applied=True,
            from_status=old.status.value,
            to_status=new.status.value,
        )
        tag = f"{order_id}_{new.status.value}"
        batch = self.store.batch()

        def stage_notification(doc_id: str, notification: NotificationRecord) -> None:
            batch.set(NOTIFICATIONS, doc_id, notification.to_document())
            outcome.writes += 1

        log_entry = ActivityLogEntry(
            entity_type="order",
            entity_id=order_id,
            type="order_updated",
            message=f'Order status changed from "{old.status.value}" to "{new.status.value}"',
            user_id=new.user_id,
            metadata={
                "oldStatus": old.status.value,
                "newStatus": new.status.value,
                "driverId": new.driver_id,
            },
            created_at=now,
        )
        batch.set(ACTIVITY_LOGS, f"order_updated_{tag}", log_entry.to_document())
        outcome.writes += 1

        if new.user_id:
            stage_notification(
                f"order_update_{tag}_customer",
                NotificationRecord(
                    target=new.user_id,
                    category="order",
                    type="order_update",
                    title=f"Order {new.status.value}",
                    message=f"Your order #{new.short_ref} is now {new.status.value}",
                    order_id=order_id,
                    timestamp=now,
                ),
            )
        else:
            log_event("order_without_customer", level=logging.WARNING, order_id=order_id)

        if new.status == OrderStatus.CANCELLED:
            stage_notification(
                f"order_cancelled_{order_id}_admin",
                NotificationRecord(
                    target=ADMIN_TARGET,
                    category="order",
                    type="warning",
                    title="Order cancelled",
                    message=f"Order #{new.short_ref} cancelled by {new.user_name or new.user_id}",
                    order_id=order_id,
                    timestamp=now,
                ),
            )

        if new.status == OrderStatus.DELIVERED:
            stage_notification(
                f"order_delivered_{order_id}_admin",
                NotificationRecord(
                    target=ADMIN_TARGET,
                    category="order",
                    type="success",
                    title="Order delivered",
                    message=f"Order #{new.short_ref} delivered successfully",
                    order_id=order_id,
                    timestamp=now,
                ),
            )

        if new.is_terminal and new.driver_id:
            if self._stage_driver_release(batch, order_id, new.driver_id, now):
                outcome.writes += 1
                outcome.released_driver_id = new.driver_id
            stage_notification(
                f"delivery_update_{tag}_{new.driver_id}",
                NotificationRecord(
                    target=new.driver_id,
                    category="delivery",
                    type="delivery_update",
                    title="Delivery completed",
                    message=f"Order #{new.short_ref} has been {new.status.value}",
                    order_id=order_id,
                    timestamp=now,
                ),
            )

        if new.status == OrderStatus.SHIPPED and new.driver_id and not old.driver_id:
            stage_notification(
                f"delivery_assignment_{order_id}_{new.driver_id}",
                NotificationRecord(
                    target=new.driver_id,
                    category="delivery",
                    type="delivery_assignment",
                    title="New delivery assignment",
                    message=f"You have been assigned order #{new.short_ref}",
                    order_id=order_id,
                    timestamp=now,
                ),
            )
            outcome.notified_driver_id = new.driver_id

        try:
            batch.commit()
        except StoreError as exc:
            metrics_store.increment("order_side_effect_failure_total")
            log_event(
                "order_status_change_commit_failed",
                level=logging.ERROR,
                order_id=order_id,
                error=str(exc),
            )
            raise

        metrics_store.increment("order_transition_total")
        log_event(
            f"order_status_changed_{old.status.value}_to_{new.status.value}",
            order_id=order_id,
            driver_id=new.driver_id,
        )
        return outcome

    def _stage_driver_release(self, batch, order_id: str, driver_id: str, now: datetime) -> bool:
        driver_doc = self.store.get(DRIVERS, driver_id)
        if driver_doc is None:
            log_event("driver_release_missing_driver", level=logging.WARNING, order_id=order_id, driver_id=driver_id)
            return False

        current_order_id = driver_doc.get("currentOrderId")
        if current_order_id not in (None, order_id):
            # Driver already holds another order; releasing would drop that claim.
            log_event(
                "driver_release_skipped_reassigned",
                level=logging.WARNING,
                order_id=order_id,
                driver_id=driver_id,
            )
            return False

        batch.update(
            DRIVERS,
            driver_id,
            {
                "isAvailable": True,
                "currentOrderId": None,
                "status": DriverStatus.ONLINE.value,
                "updatedAt": now.isoformat(),
            },
            expected={"currentOrderId": current_order_id},
        )
        return True
