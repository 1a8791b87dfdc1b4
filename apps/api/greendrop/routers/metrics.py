from fastapi import APIRouter

from greendrop.observability import metrics_store
from greendrop.schemas.monitoring import MetricsResponse

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", summary="Process counters and timings", response_model=MetricsResponse)
def metrics_endpoint() -> MetricsResponse:
    snapshot = metrics_store.snapshot()
    return MetricsResponse(counters=snapshot.counters, timings=snapshot.timings)
