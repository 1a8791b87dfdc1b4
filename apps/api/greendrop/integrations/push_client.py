import logging
from typing import Any, Protocol

from greendrop.config import settings
from greendrop.integrations.transport import post_json
from greendrop.models.domain import Alert
from greendrop.observability import log_event


class PushClientProtocol(Protocol):
    def send_alert_summary(self, tokens: list[str], alerts: list[Alert]) -> bool: ...


def headline_alert(alerts: list[Alert]) -> Alert:
    return next((alert for alert in alerts if alert.is_critical), alerts[0])


def build_multicast_payload(tokens: list[str], alerts: list[Alert]) -> dict[str, Any]:
    headline = headline_alert(alerts)
    if len(alerts) > 1:
        title = f"{len(alerts)} monitoring alerts"
        body = ", ".join(alert.title for alert in alerts)
    else:
        title = headline.title
        body = headline.message
    return {
        "tokens": tokens,
        "notification": {"title": title, "body": body},
        "data": {"type": "monitoring_alert", "severity": headline.severity.value},
    }


class PushGatewayClient:
    def __init__(self, url: str, server_key: str, timeout_s: float) -> None:
        self.url = url.rstrip("/")
        self.server_key = server_key
        self.timeout_s = timeout_s

    def send_alert_summary(self, tokens: list[str], alerts: list[Alert]) -> bool:
        if not tokens or not alerts:
            return False
        if not self.url:
            log_event("push_gateway_not_configured", level=logging.WARNING)
            return False

        headers = {"Authorization": f"key={self.server_key}"} if self.server_key else None
        post_json(
            "push_gateway",
            f"{self.url}/multicast",
            build_multicast_payload(tokens, alerts),
            self.timeout_s,
            headers=headers,
        )
        return True


def get_push_client() -> PushClientProtocol:
    return PushGatewayClient(
        url=settings.push_gateway_url,
        server_key=settings.push_gateway_server_key,
        timeout_s=settings.push_gateway_timeout_s,
    )
