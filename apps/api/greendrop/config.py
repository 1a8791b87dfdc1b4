from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_STORE_BACKENDS = {"sql", "memory"}
ALLOWED_RUNTIME_STORE_BACKENDS = {"sql"}


class Settings(BaseSettings):
    app_name: str = "GreenDrop Orchestrator"

    database_url: str = Field(
        default="sqlite+pysqlite:///./greendrop.db",
        validation_alias="GREENDROP_DATABASE_URL",
    )
    testing: bool = Field(default=False, validation_alias="GREENDROP_TESTING")
    store_backend: str = Field(default="sql", validation_alias="GREENDROP_STORE_BACKEND")
    auto_create_schema: bool = True
    require_migrations: bool = False
    platform_timezone: str = "UTC"
    currency: str = "MAD"

    # Driver matching
    matching_radius_km: float = 10.0
    matching_max_results: int = 5
    matching_default_rating: float = 3.0
    matching_weight_distance: float = 0.50
    matching_weight_rating: float = 0.20
    matching_weight_experience: float = 0.15
    matching_weight_recency: float = 0.15
    matching_experience_saturation: int = 100
    matching_recency_full_s: int = 5 * 60
    matching_recency_zero_s: int = 30 * 60

    # Health monitor
    schedule_interval_s: int = 300
    alert_dedup_window_s: int = 30 * 60
    health_driver_utilization_pct: int = 90
    health_open_disputes_max: int = 10
    health_pending_verifications_max: int = 20
    health_on_time_rate_min_pct: int = 80
    health_on_time_min_samples: int = 5
    health_zero_revenue_hour: int = 12
    health_zero_revenue_min_orders: int = 10
    health_stale_shipped_s: int = 2 * 60 * 60
    health_no_signups_hour: int = 18
    health_no_signups_min_users: int = 20

    # Outbound integrations
    alert_webhook_url: str = ""
    alert_webhook_username: str = "GreenDrop Monitoring"
    alert_webhook_timeout_s: float = 5.0

    push_gateway_url: str = ""
    push_gateway_server_key: str = ""
    push_gateway_timeout_s: float = 5.0

    metrics_sink_url: str = ""
    metrics_sink_user: str = ""
    metrics_sink_api_key: str = ""
    metrics_sink_timeout_s: float = 5.0
    metrics_prefix: str = "greendrop"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, value: str) -> str:
        backend = value.lower().strip()
        if backend not in ALLOWED_STORE_BACKENDS:
            allowed = ", ".join(sorted(ALLOWED_STORE_BACKENDS))
            raise ValueError(f"GREENDROP_STORE_BACKEND must be one of: {allowed}")
        return backend

    @field_validator("platform_timezone")
    @classmethod
    def validate_platform_timezone(cls, value: str) -> str:
        if value.upper() != "UTC":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValueError(f"Unknown platform timezone: {value}") from exc
        return value


settings = Settings()


def platform_tz() -> tzinfo:
    if settings.platform_timezone.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(settings.platform_timezone)


def ensure_secure_runtime_settings() -> None:
    """Fail fast when production-like runtime uses test-only backends."""
    if not settings.testing and settings.store_backend not in ALLOWED_RUNTIME_STORE_BACKENDS:
        raise RuntimeError("GREENDROP_STORE_BACKEND must be 'sql' when GREENDROP_TESTING is false")
    if not settings.testing and _is_sqlite_url(settings.database_url):
        raise RuntimeError("GREENDROP_DATABASE_URL must use postgres when GREENDROP_TESTING is false")


def _is_sqlite_url(database_url: str) -> bool:
    value = database_url.strip().lower()
    return value.startswith("sqlite")
