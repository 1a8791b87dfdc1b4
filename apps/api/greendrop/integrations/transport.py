from typing import Any

import httpx

from greendrop.integrations.errors import (
    IntegrationBadGatewayError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)


def post_json(
    service: str,
    url: str,
    payload: Any,
    timeout_s: float,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Single POST attempt; failures surface as integration errors for the caller to log."""
    try:
        with httpx.Client(timeout=timeout_s) as client:
            response = client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as err:
        raise IntegrationTimeoutError(service) from err
    except httpx.TransportError as err:
        raise IntegrationUnavailableError(service, str(err)) from err

    if response.status_code >= 500:
        raise IntegrationUnavailableError(service, f"{service} returned {response.status_code}")
    if response.status_code >= 400:
        raise IntegrationBadGatewayError(service, f"{service} returned {response.status_code}")
    return response
