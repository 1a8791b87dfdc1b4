import logging

from fastapi import APIRouter, Depends

from greendrop.dependencies import get_health_monitor, get_metrics_aggregator
from greendrop.models.domain import now_utc
from greendrop.observability import log_event
from greendrop.schemas.monitoring import HealthCheckRunResponse, MetricsPushRunResponse
from greendrop.services.health_monitor import HealthMonitor
from greendrop.services.metrics_aggregator import MetricsAggregator
from greendrop.services.store import StoreError

router = APIRouter(prefix="/api/v1/monitoring", tags=["monitoring"])


@router.post(
    "/health-check/run",
    response_model=HealthCheckRunResponse,
    summary="Evaluate platform health rules and deliver new alerts",
)
def run_health_check(monitor: HealthMonitor = Depends(get_health_monitor)) -> HealthCheckRunResponse:
    """Always 200: the next scheduled tick is the retry."""
    try:
        outcome = monitor.run()
    except StoreError as err:
        log_event("health_check_failed", level=logging.ERROR, error=str(err))
        return HealthCheckRunResponse(status="failed", evaluated_at=now_utc(), error=str(err))

    return HealthCheckRunResponse(
        status="ok",
        evaluated_at=outcome.evaluated_at,
        raised=outcome.raised,
        sent=outcome.sent,
        suppressed=outcome.suppressed,
        webhook_delivered=outcome.webhook_delivered,
        push_delivered=outcome.push_delivered,
        delivery_errors=outcome.delivery_errors,
    )


@router.post(
    "/metrics/push",
    response_model=MetricsPushRunResponse,
    summary="Aggregate business metrics and push them to the sink",
)
def push_metrics(
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
) -> MetricsPushRunResponse:
    try:
        outcome = aggregator.run()
    except StoreError as err:
        log_event("metrics_push_failed", level=logging.ERROR, error=str(err))
        return MetricsPushRunResponse(
            status="failed",
            time=int(now_utc().timestamp()),
            error={"code": "STORE_ERROR", "message": str(err)},
        )

    return MetricsPushRunResponse(
        status="failed" if outcome.error else "ok",
        time=outcome.time,
        sample_count=len(outcome.samples),
        pushed=outcome.pushed,
        samples=outcome.samples,
        error=outcome.error,
    )
