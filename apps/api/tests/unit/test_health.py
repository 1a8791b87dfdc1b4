def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "service": "GreenDrop Orchestrator",
        "store_backend": "sql",
    }


def test_readiness_check(client):
    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "dependencies": [{"name": "database", "status": "ok"}],
    }


def test_readiness_skips_database_for_memory_backend(client, monkeypatch):
    from greendrop.routers import health

    monkeypatch.setattr(health.settings, "store_backend", "memory")

    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "dependencies": []}


def test_health_endpoint_exposes_explicit_response_schema(client):
    openapi = client.get("/openapi.json")
    assert openapi.status_code == 200

    payload = openapi.json()
    health_get = payload["paths"]["/health"]["get"]
    ready_get = payload["paths"]["/ready"]["get"]

    assert health_get["responses"]["200"]["content"]["application/json"]["schema"]["$ref"] == (
        "#/components/schemas/HealthResponse"
    )
    assert ready_get["responses"]["503"]["content"]["application/json"]["schema"]["$ref"] == (
        "#/components/schemas/ReadinessResponse"
    )


def test_readiness_check_degraded_when_database_unavailable(client, monkeypatch):
    from greendrop.routers import health

    monkeypatch.setattr(health, "_database_dependency_status", lambda *_args, **_kwargs: "error")

    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json() == {
        "status": "degraded",
        "dependencies": [{"name": "database", "status": "error"}],
    }


def test_readiness_check_degraded_when_dependency_check_raises(client, monkeypatch):
    from greendrop.routers import health

    def _broken_db(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(health, "_database_dependency_status", _broken_db)

    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


def test_metrics_endpoint_reports_request_counters(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    body = response.json()
    assert body["counters"]["http_requests_total"] >= 1
    assert body["timings"]["http_request_duration_seconds"]["count"] >= 1


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"
