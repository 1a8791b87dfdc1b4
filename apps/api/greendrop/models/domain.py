import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from greendrop.config import settings
from greendrop.observability import log_event, metrics_store

ORDERS = "orders"
DRIVERS = "drivers"
USERS = "users"
VERIFICATIONS = "verifications"
DISPUTES = "disputes"
SHOPS = "shops"
NOTIFICATIONS = "notifications"
ACTIVITY_LOGS = "activityLogs"
ALERT_HISTORY = "alertHistory"

ADMIN_TARGET = "admin"
DRIVER_ROLE = "driver"
ADMIN_ROLES = ("admin", "supervisor")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


@dataclass(frozen=True)
class Snapshot:
    id: str
    data: dict[str, Any]


class OrderStatus(str, enum.Enum):
    CREATED = "created"
    PAID = "paid"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class DriverStatus(str, enum.Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"
    BREAK = "break"


class AlertSeverity(str, enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class DocumentModel(BaseModel):
    """Base for records shared with the console and mobile apps (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class GeoPoint(DocumentModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class DriverLocation(GeoPoint):
    heading: float = 0.0
    speed: float = 0.0
    updated_at: UtcDatetime | None = None


class TimelineEntry(DocumentModel):
    id: str
    type: str = "status"
    title: str
    description: str = ""
    actor: str = "system"
    timestamp: UtcDatetime


class Order(DocumentModel):
    id: str
    status: OrderStatus = OrderStatus.CREATED
    user_id: str | None = None
    user_name: str | None = None
    driver_id: str | None = None
    driver_name: str | None = None
    driver_phone: str | None = None
    shop_id: str | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    total: float = 0.0
    delivery_fee: float = 0.0
    pickup_location: GeoPoint | None = None
    dropoff_location: GeoPoint | None = None
    zone: str | None = None
    timeline: list[TimelineEntry] = Field(default_factory=list)
    created_at: UtcDatetime | None = None
    updated_at: UtcDatetime | None = None
    shipped_at: UtcDatetime | None = None
    delivered_at: UtcDatetime | None = None
    estimated_delivery: UtcDatetime | None = None

    @property
    def short_ref(self) -> str:
        return self.id[-6:].upper()

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES


class Driver(DocumentModel):
    id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    status: DriverStatus = DriverStatus.OFFLINE
    vehicle_type: str = "bike"
    is_available: bool = False
    current_order_id: str | None = None
    location: DriverLocation | None = None
    rating: float = Field(default=5.0, ge=0, le=5)
    completed_deliveries: int = Field(default=0, ge=0)
    last_seen_at: UtcDatetime | None = None


class UserProfile(DocumentModel):
    id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    status: str | None = None
    fcm_tokens: list[str] = Field(default_factory=list)
    created_at: UtcDatetime | None = None

    @property
    def is_driver(self) -> bool:
        return self.role == DRIVER_ROLE


class ActivityLogEntry(DocumentModel):
    entity_type: str
    entity_id: str
    type: str
    message: str
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime


class NotificationRecord(DocumentModel):
    target: str
    category: str
    type: str
    title: str
    message: str
    order_id: str | None = None
    read: bool = False
    timestamp: UtcDatetime


class Alert(BaseModel):
    id: str
    severity: AlertSeverity
    title: str
    message: str
    team: str

    @property
    def is_critical(self) -> bool:
        return self.severity == AlertSeverity.CRITICAL


class AlertHistoryEntry(DocumentModel):
    alert_id: str
    severity: AlertSeverity
    title: str
    message: str
    team: str
    sent_at: UtcDatetime


class MetricSample(BaseModel):
    name: str
    value: float
    interval: int
    time: int


@dataclass(frozen=True)
class MatchCandidate:
    driver: Driver
    distance_km: float
    score: float


def normalize_order(doc_id: str, data: dict[str, Any]) -> Order:
    payload = {**data, "id": doc_id}
    if payload.get("total") is None:
        payload["total"] = payload.get("totalAmount") or 0.0
    if payload.get("deliveryFee") is None:
        payload["deliveryFee"] = 0.0
    if payload.get("items") is None:
        payload["items"] = []
    if payload.get("timeline") is None:
        payload["timeline"] = []
    return Order.model_validate(payload)


def normalize_driver(doc_id: str, data: dict[str, Any]) -> Driver:
    payload = {**data, "id": doc_id}
    if payload.get("rating") is None:
        payload["rating"] = settings.matching_default_rating
    if payload.get("completedDeliveries") is None:
        payload["completedDeliveries"] = 0
    return Driver.model_validate(payload)


def normalize_user(doc_id: str, data: dict[str, Any]) -> UserProfile:
    payload = {**data, "id": doc_id}
    if payload.get("fcmTokens") is None:
        payload["fcmTokens"] = []
    return UserProfile.model_validate(payload)


RecordT = TypeVar("RecordT", bound=DocumentModel)


def normalize_many(
    snapshots: Iterable[Snapshot],
    normalizer: Callable[[str, dict[str, Any]], RecordT],
    kind: str,
) -> list[RecordT]:
    records: list[RecordT] = []
    for snapshot in snapshots:
        try:
            records.append(normalizer(snapshot.id, snapshot.data))
        except ValidationError as exc:
            metrics_store.increment("malformed_documents_total")
            log_event(
                f"malformed_{kind}_document_skipped",
                level=logging.WARNING,
                error=f"{snapshot.id}:{exc.error_count()} errors",
            )
    return records
