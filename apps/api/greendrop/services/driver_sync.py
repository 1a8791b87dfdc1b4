import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from greendrop.models.domain import DRIVERS, DriverStatus, UserProfile, normalize_user, now_utc
from greendrop.observability import log_event, metrics_store
from greendrop.services.store import DocumentStore

SYNCED_PROFILE_FIELDS = ("name", "email", "phone")


@dataclass
class DriverSyncOutcome:
    user_id: str
    action: str
    changed_fields: list[str] = field(default_factory=list)


class DriverProfileSync:
    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = now_utc) -> None:
        self.store = store
        self.clock = clock

    def on_user_write(
        self,
        user_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> DriverSyncOutcome:
        old = normalize_user(user_id, before) if before else None
        new = normalize_user(user_id, after) if after else None
        was_driver = old is not None and old.is_driver

        if new is None:
            if was_driver:
                return self._deactivate(user_id, reason="user_deleted")
            return DriverSyncOutcome(user_id=user_id, action="ignored")

        if was_driver and not new.is_driver:
            return self._deactivate(user_id, reason="role_changed")

        if not new.is_driver:
            return DriverSyncOutcome(user_id=user_id, action="ignored")

        existing = self.store.get(DRIVERS, user_id)
        if existing is None:
            return self._create(new)
        return self._sync_fields(new, existing)

    def _deactivate(self, user_id: str, *, reason: str) -> DriverSyncOutcome:
        existing = self.store.get(DRIVERS, user_id)
        if existing is None:
            return DriverSyncOutcome(user_id=user_id, action="ignored")
        if existing.get("status") == DriverStatus.OFFLINE.value and not existing.get("isAvailable"):
            return DriverSyncOutcome(user_id=user_id, action="unchanged")

        self.store.update(
            DRIVERS,
            user_id,
            {
                "status": DriverStatus.OFFLINE.value,
                "isAvailable": False,
                "updatedAt": self.clock().isoformat(),
            },
        )
        if existing.get("currentOrderId"):
            # The order keeps its driver reference; the release happens on its terminal transition.
            log_event(
                "driver_deactivated_with_active_order",
                level=logging.WARNING,
                driver_id=user_id,
                order_id=existing["currentOrderId"],
            )
        metrics_store.increment("driver_deactivated_total")
        log_event(f"driver_deactivated_{reason}", driver_id=user_id)
        return DriverSyncOutcome(user_id=user_id, action="deactivated")

    def _create(self, profile: UserProfile) -> DriverSyncOutcome:
        user_id = profile.id
        now = self.clock().isoformat()
        self.store.set(
            DRIVERS,
            user_id,
            {
                "id": user_id,
                "driverId": user_id,
                "name": profile.name or "",
                "email": profile.email or "",
                "phone": profile.phone or "",
                "status": DriverStatus.OFFLINE.value,
                "vehicleType": "bike",
                "rating": 5.0,
                "completedDeliveries": 0,
                "currentOrderId": None,
                "isAvailable": False,
                "location": {"lat": 0.0, "lng": 0.0, "updatedAt": now},
                "lastSeenAt": now,
                "createdAt": now,
            },
        )
        metrics_store.increment("driver_created_total")
        log_event("driver_record_created", driver_id=user_id, user_id=user_id)
        return DriverSyncOutcome(user_id=user_id, action="created")

    def _sync_fields(self, profile: UserProfile, driver: dict[str, Any]) -> DriverSyncOutcome:
        user_id = profile.id
        incoming = {name: getattr(profile, name) for name in SYNCED_PROFILE_FIELDS}
        patch = {
            name: value
            for name, value in incoming.items()
            if value and value != driver.get(name)
        }
        if not patch:
            return DriverSyncOutcome(user_id=user_id, action="unchanged")

        changed = sorted(patch)
        patch["updatedAt"] = self.clock().isoformat()
        self.store.update(DRIVERS, user_id, patch)
        log_event(f"driver_profile_synced:{','.join(changed)}", driver_id=user_id)
        return DriverSyncOutcome(user_id=user_id, action="synced", changed_fields=changed)
