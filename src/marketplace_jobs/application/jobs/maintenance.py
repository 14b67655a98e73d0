"""Scheduled housekeeping: stuck jobs, error alerts, error retention and Redis cleanup."""

from __future__ import annotations

from datetime import timedelta

from marketplace_jobs.domain.types import (
    ErrorCleanupPayload,
    ErrorPatternCheckPayload,
    JobContext,
    JobResult,
    QueueCleanupPayload,
    StuckTaskDetectPayload,
)


async def handle_stuck_task_detect(services, payload: StuckTaskDetectPayload, job_ctx: JobContext) -> JobResult:
    summary = await services.stuck_detector.detect_and_heal()
    return JobResult(
        success=True,
        message=f"Healed {summary['healed']} stuck jobs, {summary['permanently_failed']} permanently failed",
        data=summary,
    )


async def handle_error_pattern_check(services, payload: ErrorPatternCheckPayload, job_ctx: JobContext) -> JobResult:
    alerts = services.error_tracking.check_error_patterns(
        window=timedelta(minutes=payload.window_minutes),
        threshold=payload.threshold,
    )
    return JobResult(
        success=True,
        message=f"{len(alerts)} alerts raised",
        data={"alerts": [a.to_dict() for a in alerts]},
    )


async def handle_error_cleanup(services, payload: ErrorCleanupPayload, job_ctx: JobContext) -> JobResult:
    deleted = services.error_tracking.cleanup_old_errors(retention_days=payload.retention_days)
    return JobResult(success=True, message=f"Deleted {deleted} old job errors", data={"deleted": deleted})


async def handle_queue_cleanup(services, payload: QueueCleanupPayload, job_ctx: JobContext) -> JobResult:
    summary = await services.queues.clean_all_queues(
        completed_max_age=payload.completed_max_age,
        failed_max_age=payload.failed_max_age,
    )
    return JobResult(success=True, message="Cleaned queue results", data=summary)
