"""Scheduler worker module exports."""

from .worker import (
    JOB_PATHS,
    JobRunResult,
    SchedulerWorkerSettings,
    load_settings,
    run_job_once,
    run_job_with_retries,
    run_tick,
    run_forever,
)

__all__ = [
    "JOB_PATHS",
    "JobRunResult",
    "SchedulerWorkerSettings",
    "load_settings",
    "run_job_once",
    "run_job_with_retries",
    "run_tick",
    "run_forever",
]
