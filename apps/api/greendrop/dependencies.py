from fastapi import Depends
from sqlalchemy.orm import Session

from greendrop.config import settings
from greendrop.db.session import get_db
from greendrop.integrations.alert_webhook_client import (
    AlertWebhookProtocol,
    get_alert_webhook_client,
)
from greendrop.integrations.metrics_sink_client import MetricsSinkProtocol, get_metrics_sink_client
from greendrop.integrations.push_client import PushClientProtocol, get_push_client
from greendrop.services.admin_notifications import AdminNotifier
from greendrop.services.change_feed import ChangeFeedDispatcher
from greendrop.services.driver_matching import DriverMatcher
from greendrop.services.driver_sync import DriverProfileSync
from greendrop.services.health_monitor import HealthMonitor
from greendrop.services.metrics_aggregator import MetricsAggregator
from greendrop.services.order_lifecycle import OrderLifecycle
from greendrop.services.sql_store import SqlDocumentStore
from greendrop.services.store import DocumentStore, InMemoryDocumentStore

memory_store = InMemoryDocumentStore()


def get_store(db: Session = Depends(get_db)) -> DocumentStore:
    if settings.store_backend == "memory":
        return memory_store
    return SqlDocumentStore(db)


def get_driver_matcher(store: DocumentStore = Depends(get_store)) -> DriverMatcher:
    return DriverMatcher(store, default_max_results=settings.matching_max_results)


def get_change_feed_dispatcher(
    store: DocumentStore = Depends(get_store),
    matcher: DriverMatcher = Depends(get_driver_matcher),
) -> ChangeFeedDispatcher:
    return ChangeFeedDispatcher(
        lifecycle=OrderLifecycle(store, matcher),
        driver_sync=DriverProfileSync(store),
        admin_notifier=AdminNotifier(store),
    )


def get_health_monitor(
    store: DocumentStore = Depends(get_store),
    webhook: AlertWebhookProtocol = Depends(get_alert_webhook_client),
    push: PushClientProtocol = Depends(get_push_client),
) -> HealthMonitor:
    return HealthMonitor(store, webhook=webhook, push=push)


def get_metrics_aggregator(
    store: DocumentStore = Depends(get_store),
    sink: MetricsSinkProtocol = Depends(get_metrics_sink_client),
) -> MetricsAggregator:
    return MetricsAggregator(store, sink=sink)
