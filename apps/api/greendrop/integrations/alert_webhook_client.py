import logging
from datetime import datetime
from typing import Any, Protocol

from greendrop.config import settings
from greendrop.integrations.transport import post_json
from greendrop.models.domain import Alert, AlertSeverity
from greendrop.observability import log_event

SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: 0xFF0000,
    AlertSeverity.WARNING: 0xFFAA00,
    AlertSeverity.INFO: 0x0099FF,
}


class AlertWebhookProtocol(Protocol):
    def send_alerts(self, alerts: list[Alert], sent_at: datetime) -> bool: ...


def build_webhook_payload(alerts: list[Alert], sent_at: datetime, username: str) -> dict[str, Any]:
    return {
        "username": username,
        "embeds": [
            {
                "title": alert.title,
                "description": alert.message,
                "color": SEVERITY_COLORS[alert.severity],
                "fields": [
                    {"name": "Severity", "value": alert.severity.value.upper(), "inline": True},
                    {"name": "Team", "value": alert.team, "inline": True},
                ],
                "timestamp": sent_at.isoformat(),
                "footer": {"text": "GreenDrop Health Check"},
            }
            for alert in alerts
        ],
    }


class AlertWebhookClient:
    """Post a batch of alerts as rich embeds to a chat webhook."""

    def __init__(self, url: str, username: str, timeout_s: float) -> None:
        self.url = url
        self.username = username
        self.timeout_s = timeout_s

    def send_alerts(self, alerts: list[Alert], sent_at: datetime) -> bool:
        if not alerts:
            return False
        if not self.url:
            log_event("alert_webhook_not_configured", level=logging.WARNING)
            return False

        post_json(
            "alert_webhook",
            self.url,
            build_webhook_payload(alerts, sent_at, self.username),
            self.timeout_s,
        )
        return True


def get_alert_webhook_client() -> AlertWebhookProtocol:
    return AlertWebhookClient(
        url=settings.alert_webhook_url,
        username=settings.alert_webhook_username,
        timeout_s=settings.alert_webhook_timeout_s,
    )
