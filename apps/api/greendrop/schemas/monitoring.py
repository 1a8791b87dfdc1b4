from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from greendrop.models.domain import MetricSample

RunStatus = Literal["ok", "failed"]


class HealthCheckRunResponse(BaseModel):
    status: RunStatus
    evaluated_at: datetime
    raised: list[str] = []
    sent: list[str] = []
    suppressed: list[str] = []
    webhook_delivered: bool = False
    push_delivered: bool = False
    delivery_errors: list[dict[str, Any]] = []
    error: str | None = None


class MetricsPushRunResponse(BaseModel):
    status: RunStatus
    time: int
    sample_count: int = 0
    pushed: bool = False
    samples: list[MetricSample] = []
    error: dict[str, Any] | None = None


class TimingMetricStats(BaseModel):
    count: int
    avg_s: float
    max_s: float


class MetricsResponse(BaseModel):
    counters: dict[str, int]
    timings: dict[str, TimingMetricStats]
