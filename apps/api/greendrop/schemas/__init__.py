from greendrop.schemas.dispatch import MatchCandidateItem, MatchCandidatesResponse, MatchResponse
from greendrop.schemas.events import ChangeEventRequest, ChangeEventResponse
from greendrop.schemas.monitoring import (
    HealthCheckRunResponse,
    MetricsPushRunResponse,
    MetricsResponse,
)

__all__ = [
    "ChangeEventRequest",
    "ChangeEventResponse",
    "MatchCandidateItem",
    "MatchCandidatesResponse",
    "MatchResponse",
    "HealthCheckRunResponse",
    "MetricsPushRunResponse",
    "MetricsResponse",
]
