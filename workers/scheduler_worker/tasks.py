"""Scheduler worker tasks."""

from __future__ import annotations

from workers.scheduler_worker.worker import (
    JobRunResult,
    SchedulerWorkerSettings,
    load_settings,
    run_job_with_retries,
    run_tick,
)


def scheduled_tick(settings: SchedulerWorkerSettings | None = None) -> list[JobRunResult]:
    """Run every configured job once, for cron-style scheduling."""
    return run_tick(settings or load_settings())


def health_check_tick(settings: SchedulerWorkerSettings | None = None) -> JobRunResult:
    return run_job_with_retries(settings or load_settings(), "health_check")


def metrics_push_tick(settings: SchedulerWorkerSettings | None = None) -> JobRunResult:
    return run_job_with_retries(settings or load_settings(), "metrics_push")
