import importlib.util
import json
import pathlib
import sys
import urllib.error

import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[4]
WORKER_PATH = REPO_ROOT / "workers" / "scheduler_worker" / "worker.py"


module_spec = importlib.util.spec_from_file_location("scheduler_worker_module", WORKER_PATH)
worker_module = importlib.util.module_from_spec(module_spec)
assert module_spec and module_spec.loader
sys.modules[module_spec.name] = worker_module
module_spec.loader.exec_module(worker_module)


class _FakeResponse:
    def __init__(self, body, status: int = 200) -> None:
        self._body = (body if isinstance(body, str) else json.dumps(body)).encode("utf-8")
        self.status = status

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def _settings(**overrides):
    values = {
        "api_base_url": "http://api",
        "interval_s": 300,
        "timeout_s": 2.0,
        "max_retries": 2,
        "retry_backoff_s": 0.5,
        "jobs": ("health_check", "metrics_push"),
    }
    values.update(overrides)
    return worker_module.SchedulerWorkerSettings(**values)


def _http_error(url: str, code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(url=url, code=code, msg="error", hdrs=None, fp=None)


def test_load_settings_defaults():
    settings = worker_module.load_settings({})

    assert settings.api_base_url == "http://localhost:8000"
    assert settings.interval_s == 300
    assert settings.timeout_s == 30.0
    assert settings.max_retries == 2
    assert settings.jobs == ("health_check", "metrics_push")


def test_load_settings_strips_trailing_slash_and_selects_jobs():
    settings = worker_module.load_settings(
        {
            "GREENDROP_SCHEDULER_API_BASE_URL": "http://api:8000/",
            "GREENDROP_SCHEDULER_JOBS": " metrics_push ",
        }
    )

    assert settings.api_base_url == "http://api:8000"
    assert settings.jobs == ("metrics_push",)


def test_load_settings_rejects_invalid_interval():
    with pytest.raises(ValueError, match="INTERVAL"):
        worker_module.load_settings({"GREENDROP_SCHEDULER_INTERVAL_S": "0"})


def test_load_settings_rejects_negative_max_retries():
    with pytest.raises(ValueError, match="MAX_RETRIES"):
        worker_module.load_settings({"GREENDROP_SCHEDULER_MAX_RETRIES": "-1"})


def test_load_settings_rejects_unknown_job():
    with pytest.raises(ValueError, match="JOBS"):
        worker_module.load_settings({"GREENDROP_SCHEDULER_JOBS": "health_check,backup"})


def test_run_job_once_posts_to_job_endpoint():
    def opener(request, timeout):
        assert timeout == 2.0
        assert request.full_url == "http://api/api/v1/monitoring/health-check/run"
        assert request.get_method() == "POST"
        return _FakeResponse({"status": "ok", "raised": []})

    result = worker_module.run_job_once(_settings(), "health_check", opener=opener)

    assert result.ok is True
    assert result.run_status == "ok"
    assert result.status_code == 200


def test_failed_run_status_is_still_a_completed_job():
    def opener(request, timeout):
        return _FakeResponse({"status": "failed", "error": {"code": "STORE_ERROR"}})

    result = worker_module.run_job_once(_settings(), "metrics_push", opener=opener)

    assert result.ok is True
    assert result.run_status == "failed"


def test_run_job_once_rejects_malformed_body():
    def opener(request, timeout):
        return _FakeResponse("not json")

    result = worker_module.run_job_once(_settings(), "health_check", opener=opener)

    assert result.ok is False
    assert result.error == "Invalid JSON in run response"


def test_run_job_once_http_error_returns_failure():
    def opener(request, timeout):
        raise _http_error(request.full_url, 503)

    result = worker_module.run_job_once(_settings(), "health_check", opener=opener)

    assert result.ok is False
    assert result.status_code == 503
    assert result.error == "HTTPError: 503"


def test_retries_with_exponential_backoff_then_succeeds():
    calls = {"count": 0}
    sleeps: list[float] = []

    def opener(request, timeout):
        calls["count"] += 1
        if calls["count"] < 3:
            raise urllib.error.URLError("connection refused")
        return _FakeResponse({"status": "ok"})

    result = worker_module.run_job_with_retries(
        _settings(), "health_check", opener=opener, sleep=sleeps.append
    )

    assert result.ok is True
    assert result.attempts == 3
    assert sleeps == [0.5, 1.0]


def test_client_errors_are_not_retried():
    sleeps: list[float] = []

    def opener(request, timeout):
        raise _http_error(request.full_url, 404)

    result = worker_module.run_job_with_retries(
        _settings(), "health_check", opener=opener, sleep=sleeps.append
    )

    assert result.ok is False
    assert result.attempts == 1
    assert sleeps == []


def test_retries_stop_at_max_retries():
    sleeps: list[float] = []

    def opener(request, timeout):
        raise _http_error(request.full_url, 429)

    result = worker_module.run_job_with_retries(
        _settings(max_retries=1), "metrics_push", opener=opener, sleep=sleeps.append
    )

    assert result.ok is False
    assert result.attempts == 2
    assert sleeps == [0.5]


def test_one_failing_job_does_not_skip_the_other():
    def opener(request, timeout):
        if request.full_url.endswith("/health-check/run"):
            raise _http_error(request.full_url, 400)
        return _FakeResponse({"status": "ok"})

    results = worker_module.run_tick(_settings(), opener=opener, sleep=lambda _s: None)

    assert [result.job for result in results] == ["health_check", "metrics_push"]
    assert [result.ok for result in results] == [False, True]
