"""Routes store change events to the handler owning each collection.

Events are delivered at least once, so every handler reached from here must be safe
to run again with the same ``(before, after)`` pair.
"""

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from greendrop.models.domain import DISPUTES, ORDERS, USERS, VERIFICATIONS
from greendrop.observability import log_event, metrics_store, observe_timing
from greendrop.services.admin_notifications import AdminNotifier
from greendrop.services.driver_sync import DriverProfileSync
from greendrop.services.order_lifecycle import OrderLifecycle


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    document_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None

    @property
    def kind(self) -> str:
        if self.before is None and self.after is not None:
            return "create"
        if self.before is not None and self.after is None:
            return "delete"
        if self.before is None:
            return "empty"
        return "update"


@dataclass
class DispatchResult:
    collection: str
    document_id: str
    kind: str
    handled: bool
    action: str
    detail: dict[str, Any] = field(default_factory=dict)


class ChangeFeedDispatcher:
    def __init__(
        self,
        lifecycle: OrderLifecycle,
        driver_sync: DriverProfileSync,
        admin_notifier: AdminNotifier,
    ) -> None:
        self.lifecycle = lifecycle
        self.driver_sync = driver_sync
        self.admin_notifier = admin_notifier
        self._handlers: dict[str, Callable[[ChangeEvent], DispatchResult]] = {
            ORDERS: self._handle_order,
            USERS: self._handle_user,
            VERIFICATIONS: self._handle_verification,
            DISPUTES: self._handle_dispute,
        }

    def dispatch(self, event: ChangeEvent) -> DispatchResult:
        metrics_store.increment("change_events_total")
        handler = self._handlers.get(event.collection)
        if handler is None:
            metrics_store.increment("change_events_ignored_total")
            log_event(f"change_event_ignored_collection:{event.collection}", level=logging.WARNING)
            return self._result(event, handled=False, action="ignored")

        with observe_timing(f"change_event_{event.collection}_seconds"):
            return handler(event)

    def _result(self, event: ChangeEvent, *, handled: bool, action: str, detail: Any = None) -> DispatchResult:
        return DispatchResult(
            collection=event.collection,
            document_id=event.document_id,
            kind=event.kind,
            handled=handled,
            action=action,
            detail=asdict(detail) if detail is not None else {},
        )

    def _handle_order(self, event: ChangeEvent) -> DispatchResult:
        if event.kind == "create":
            outcome = self.lifecycle.on_order_created(event.document_id, event.after or {})
            return self._result(event, handled=True, action="order_created", detail=outcome)
        if event.kind == "update":
            outcome = self.lifecycle.on_order_status_change(
                event.document_id, event.before or {}, event.after or {}
            )
            action = "order_status_changed" if outcome.applied else "unchanged"
            return self._result(event, handled=outcome.applied, action=action, detail=outcome)
        return self._result(event, handled=False, action="ignored")

    def _handle_user(self, event: ChangeEvent) -> DispatchResult:
        if event.kind == "empty":
            return self._result(event, handled=False, action="ignored")
        outcome = self.driver_sync.on_user_write(event.document_id, event.before, event.after)
        return self._result(
            event,
            handled=outcome.action not in {"ignored", "unchanged"},
            action=f"driver_{outcome.action}",
            detail=outcome,
        )

    def _handle_verification(self, event: ChangeEvent) -> DispatchResult:
        if event.kind != "create":
            return self._result(event, handled=False, action="ignored")
        self.admin_notifier.on_verification_submitted(event.document_id, event.after or {})
        return self._result(event, handled=True, action="verification_notified")

    def _handle_dispute(self, event: ChangeEvent) -> DispatchResult:
        if event.kind != "create":
            return self._result(event, handled=False, action="ignored")
        self.admin_notifier.on_dispute_created(event.document_id, event.after or {})
        return self._result(event, handled=True, action="dispute_notified")
