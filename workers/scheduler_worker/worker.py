"""Scheduler worker that drives the periodic health check and metrics push."""

from __future__ import annotations

import json
import os
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Callable

JOB_PATHS = {
    "health_check": "/api/v1/monitoring/health-check/run",
    "metrics_push": "/api/v1/monitoring/metrics/push",
}


@dataclass(frozen=True)
class SchedulerWorkerSettings:
    api_base_url: str
    interval_s: int
    timeout_s: float
    max_retries: int
    retry_backoff_s: float
    jobs: tuple[str, ...]


@dataclass(frozen=True)
class JobRunResult:
    job: str
    ok: bool
    status_code: int | None = None
    run_status: str | None = None
    error: str | None = None
    attempts: int = 1


def load_settings(env: dict[str, str] | None = None) -> SchedulerWorkerSettings:
    source = env if env is not None else os.environ
    api_base_url = source.get("GREENDROP_SCHEDULER_API_BASE_URL", "http://localhost:8000").strip()
    interval_s = int(source.get("GREENDROP_SCHEDULER_INTERVAL_S", "300"))
    timeout_s = float(source.get("GREENDROP_SCHEDULER_TIMEOUT_S", "30"))
    max_retries = int(source.get("GREENDROP_SCHEDULER_MAX_RETRIES", "2"))
    retry_backoff_s = float(source.get("GREENDROP_SCHEDULER_RETRY_BACKOFF_S", "1"))
    jobs_value = source.get("GREENDROP_SCHEDULER_JOBS", ",".join(JOB_PATHS))

    if interval_s < 1:
        raise ValueError("GREENDROP_SCHEDULER_INTERVAL_S must be >= 1")
    if timeout_s <= 0:
        raise ValueError("GREENDROP_SCHEDULER_TIMEOUT_S must be > 0")
    if max_retries < 0:
        raise ValueError("GREENDROP_SCHEDULER_MAX_RETRIES must be >= 0")
    if retry_backoff_s < 0:
        raise ValueError("GREENDROP_SCHEDULER_RETRY_BACKOFF_S must be >= 0")

    jobs = tuple(job.strip() for job in jobs_value.split(",") if job.strip())
    unknown = [job for job in jobs if job not in JOB_PATHS]
    if unknown or not jobs:
        allowed = ", ".join(JOB_PATHS)
        raise ValueError(f"GREENDROP_SCHEDULER_JOBS must list jobs from: {allowed}")

    return SchedulerWorkerSettings(
        api_base_url=api_base_url.rstrip("/"),
        interval_s=interval_s,
        timeout_s=timeout_s,
        max_retries=max_retries,
        retry_backoff_s=retry_backoff_s,
        jobs=jobs,
    )


def _decode_run_response(raw: str) -> tuple[bool, str | None, str | None]:
    if not raw:
        return False, None, "Empty run response"
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        return False, None, "Invalid JSON in run response"
    if not isinstance(body, dict) or body.get("status") not in {"ok", "failed"}:
        return False, None, "Missing run status in response"
    return True, body["status"], None


def run_job_once(
    settings: SchedulerWorkerSettings,
    job: str,
    opener: Callable[..., object] = urllib.request.urlopen,
) -> JobRunResult:
    request = urllib.request.Request(
        url=f"{settings.api_base_url}{JOB_PATHS[job]}",
        data=b"{}",
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    try:
        with opener(request, timeout=settings.timeout_s) as response:
            raw = response.read().decode("utf-8")
            valid, run_status, error = _decode_run_response(raw)
            return JobRunResult(
                job=job,
                ok=valid,
                status_code=getattr(response, "status", 200),
                run_status=run_status,
                error=error,
            )
    except urllib.error.HTTPError as exc:
        return JobRunResult(job=job, ok=False, status_code=exc.code, error=f"HTTPError: {exc.code}")
    except urllib.error.URLError as exc:
        return JobRunResult(job=job, ok=False, error=f"URLError: {exc.reason}")


def _is_retryable(result: JobRunResult) -> bool:
    if result.ok:
        return False
    if result.status_code is None:
        return True
    if result.status_code in {408, 429}:
        return True
    return result.status_code >= 500


def run_job_with_retries(
    settings: SchedulerWorkerSettings,
    job: str,
    opener: Callable[..., object] = urllib.request.urlopen,
    sleep: Callable[[float], None] = time.sleep,
) -> JobRunResult:
    for attempts in range(1, settings.max_retries + 2):
        result = run_job_once(settings, job, opener=opener)
        if result.ok or not _is_retryable(result) or attempts > settings.max_retries:
            return JobRunResult(
                job=job,
                ok=result.ok,
                status_code=result.status_code,
                run_status=result.run_status,
                error=result.error,
                attempts=attempts,
            )

        sleep(settings.retry_backoff_s * (2 ** (attempts - 1)))

    raise RuntimeError("scheduler retry loop exhausted unexpectedly")


def run_tick(
    settings: SchedulerWorkerSettings,
    opener: Callable[..., object] = urllib.request.urlopen,
    sleep: Callable[[float], None] = time.sleep,
) -> list[JobRunResult]:
    # Jobs are independent: one failing never skips the other.
    return [run_job_with_retries(settings, job, opener=opener, sleep=sleep) for job in settings.jobs]


def run_forever(settings: SchedulerWorkerSettings) -> None:
    while True:
        started = time.monotonic()
        run_tick(settings)
        time.sleep(max(0.0, settings.interval_s - (time.monotonic() - started)))


if __name__ == "__main__":
    run_forever(load_settings())
