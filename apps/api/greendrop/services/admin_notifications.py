from collections.abc import Callable
from datetime import datetime
from typing import Any

from greendrop.models.domain import ADMIN_TARGET, NOTIFICATIONS, NotificationRecord, now_utc
from greendrop.observability import log_event
from greendrop.services.store import DocumentStore


class AdminNotifier:
    """Admin console notifications for records that need a human review."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = now_utc) -> None:
        self.store = store
        self.clock = clock

    def on_dispute_created(self, dispute_id: str, data: dict[str, Any]) -> str:
        reference = str(data.get("orderId") or dispute_id)[-6:].upper()
        reason = data.get("reason") or "reason not specified"
        notification = NotificationRecord(
            target=ADMIN_TARGET,
            category="order",
            type="alert",
            title="New dispute",
            message=f"Dispute on order #{reference}: {reason}",
            order_id=data.get("orderId"),
            timestamp=self.clock(),
        )
        doc_id = f"dispute_created_{dispute_id}"
        self.store.set(NOTIFICATIONS, doc_id, notification.to_document())
        log_event("dispute_created", order_id=data.get("orderId"), user_id=data.get("userId"))
        return doc_id

    def on_verification_submitted(self, verification_id: str, data: dict[str, Any]) -> str:
        submitter = data.get("userName") or data.get("userId") or "User"
        notification = NotificationRecord(
            target=ADMIN_TARGET,
            category="verification",
            type="alert",
            title="New verification",
            message=f"{submitter}: {data.get('type') or 'document'}",
            timestamp=self.clock(),
        )
        doc_id = f"verification_submitted_{verification_id}"
        self.store.set(NOTIFICATIONS, doc_id, notification.to_document())
        log_event("verification_submitted", user_id=data.get("userId"))
        return doc_id
