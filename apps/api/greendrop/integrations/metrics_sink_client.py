import logging
from typing import Protocol

from greendrop.config import settings
from greendrop.integrations.transport import post_json
from greendrop.models.domain import MetricSample
from greendrop.observability import log_event


class MetricsSinkProtocol(Protocol):
    def push(self, samples: list[MetricSample]) -> bool: ...


class MetricsSinkClient:
    """Graphite-style HTTP ingestion of ``{name, value, interval, time}`` samples."""

    def __init__(self, url: str, user: str, api_key: str, timeout_s: float) -> None:
        self.url = url.rstrip("/")
        self.user = user
        self.api_key = api_key
        self.timeout_s = timeout_s

    def push(self, samples: list[MetricSample]) -> bool:
        if not samples:
            return False
        if not self.url or not self.api_key:
            log_event("metrics_sink_not_configured", level=logging.WARNING)
            return False

        post_json(
            "metrics_sink",
            f"{self.url}/graphite/metrics",
            [sample.model_dump() for sample in samples],
            self.timeout_s,
            headers={"Authorization": f"Bearer {self.user}:{self.api_key}"},
        )
        return True


def get_metrics_sink_client() -> MetricsSinkProtocol:
    return MetricsSinkClient(
        url=settings.metrics_sink_url,
        user=settings.metrics_sink_user,
        api_key=settings.metrics_sink_api_key,
        timeout_s=settings.metrics_sink_timeout_s,
    )
