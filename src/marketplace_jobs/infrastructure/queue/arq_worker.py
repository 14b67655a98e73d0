"""
arq worker runtime: one WorkerSettings class per queue.

Run with e.g. ``arq marketplace_jobs.infrastructure.queue.arq_worker.DomainWorkerSettings``.

Every job function funnels into ``run_job``, which keeps the job record in
step with arq: RUNNING on start, COMPLETED on success, RETRYING plus
``arq.Retry`` for a retryable failure, FAILED for a dead-lettered one. Jobs
from a paused queue are put back unstarted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from arq import Retry
from arq.worker import Function, func
from pydantic import ValidationError

from marketplace_jobs.application.events import make_event, new_run_id
from marketplace_jobs.application.jobs import dispatch, on_dead_letter
from marketplace_jobs.application.services.error_tracking import ErrorLogEntry
from marketplace_jobs.config.settings import load_settings
from marketplace_jobs.core.errors import (
    BusinessLogicError,
    JobError,
    calculate_retry_delay,
    should_move_to_dead_letter,
    to_job_error,
)
from marketplace_jobs.domain.types import (
    JOB_TYPE_TO_QUEUE,
    MAX_JOB_ATTEMPTS,
    PAUSED_CATEGORY,
    PAYLOAD_MODELS,
    QUEUE_CONFIG,
    JobContext,
    JobResult,
    JobStatus,
    JobType,
    QueueName,
    queue_for,
)
from marketplace_jobs.infrastructure.queue.queues import dedup_key, idempotency_key, redis_queue_name
from marketplace_jobs.infrastructure.queue.schedulers import build_cron_jobs
from marketplace_jobs.infrastructure.queue.services import WorkerServices, build_services
from marketplace_jobs.logging_config import setup_logging

logger = logging.getLogger(__name__)

# How long a job from a paused queue waits before it checks again.
PAUSED_RECHECK_SECONDS = 60


def _emit(services: WorkerServices, run_id: str, event_type: str, job_ctx: JobContext, payload: Dict[str, Any]) -> None:
    try:
        services.event_log.append(
            make_event(
                run_id=run_id,
                type=event_type,
                job_type=job_ctx.job_type,
                queue=job_ctx.queue,
                job_id=job_ctx.db_job_id,
                stage=job_ctx.job_type.function_name,
                attempt=job_ctx.attempt,
                payload=payload,
            )
        )
    except Exception as e:
        logger.warning("Could not record %s event for job %s: %s", event_type, job_ctx.db_job_id, e)


def _update_status(services: WorkerServices, job_id: Optional[str], status: JobStatus, **fields: Any) -> None:
    if not job_id:
        return
    try:
        services.jobs.update_status(job_id, status, **fields)
    except Exception as e:
        logger.error("Could not mark job %s %s: %s", job_id, status.value, e)


async def _defer_while_paused(
    services: WorkerServices,
    job_type: JobType,
    queue: QueueName,
    db_job_id: Optional[str],
    arq_job_id: str,
    payload: Dict[str, Any],
) -> Dict[str, Any]:
    """Put the job back for later without spending one of its attempts."""
    if not db_job_id and arq_job_id:
        record = services.jobs.find_by_idempotency_key(idempotency_key(queue, arq_job_id))
        db_job_id = record["id"] if record else None
    if not db_job_id:
        # A cron run that never started fires again on its own schedule.
        logger.info("Queue %s is paused; skipping scheduled %s run", queue.value, job_type.value)
        return {"deferred": False, "reason": f"queue {queue.value} is paused"}
    new_arq_id = await services.queues.requeue(job_type, db_job_id, payload, delay=PAUSED_RECHECK_SECONDS)
    logger.info("Queue %s is paused; %s job %s put back as arq %s", queue.value, job_type.value, db_job_id, new_arq_id)
    return {"deferred": True, "job_id": db_job_id, "arq_job_id": new_arq_id, "reason": f"queue {queue.value} is paused"}


def _start_record(
    services: WorkerServices, job_type: JobType, queue: QueueName, db_job_id: Optional[str], arq_job_id: str, payload: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    """Mark the job RUNNING; jobs born from cron get a record on their first attempt."""
    try:
        record = services.jobs.get_job(db_job_id) if db_job_id else None
        if record is None and not db_job_id and arq_job_id:
            record = services.jobs.find_by_idempotency_key(idempotency_key(queue, arq_job_id))
        if record is None:
            record = services.jobs.create_job(
                job_type=job_type,
                queue=queue,
                payload=payload,
                site_id=payload.get("site_id"),
                dedup_key=dedup_key(job_type, payload.get("site_id"), payload),
                status=JobStatus.RUNNING,
                max_attempts=QUEUE_CONFIG[queue].attempts,
            )
            if arq_job_id:
                services.jobs.set_idempotency_key(record["id"], idempotency_key(queue, arq_job_id))
        services.jobs.update_status(record["id"], JobStatus.RUNNING)
        return record
    except Exception as e:
        logger.error("Could not record start of %s job %s: %s", job_type.value, db_job_id, e)
        return None


async def run_job(ctx: Dict[str, Any], job_type: str, db_job_id: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
    services: WorkerServices = ctx["services"]
    job_type = JobType(job_type)
    queue = queue_for(job_type)
    payload = dict(payload or {})
    arq_job_id = str(ctx.get("job_id") or "")

    try:
        queue_paused = await services.queues.is_queue_paused(queue)
    except Exception as e:
        logger.warning("Could not read the pause flag of queue %s: %s", queue.value, e)
        queue_paused = False
    if queue_paused:
        return await _defer_while_paused(services, job_type, queue, db_job_id, arq_job_id, payload)

    record = _start_record(services, job_type, queue, db_job_id, arq_job_id, payload)
    job_ctx = JobContext(
        job_type=job_type,
        queue=queue,
        db_job_id=record["id"] if record else db_job_id,
        arq_job_id=arq_job_id,
        attempt=int(ctx.get("job_try") or 1),
        max_attempts=int(record["max_attempts"]) if record and record.get("max_attempts") else QUEUE_CONFIG[queue].attempts,
        site_id=payload.get("site_id"),
    )
    run_id = new_run_id()
    _emit(services, run_id, "job_start", job_ctx, {"payload": payload})
    logger.info(
        "Starting %s job %s (attempt %d/%d)", job_type.value, job_ctx.db_job_id, job_ctx.attempt, job_ctx.max_attempts
    )

    try:
        try:
            model = PAYLOAD_MODELS[job_type].model_validate(payload)
        except ValidationError as e:
            raise BusinessLogicError(
                f"Invalid payload for {job_type.value}: {e.error_count()} validation error(s)",
                context={"errors": [err["msg"] for err in e.errors()]},
                original_error=e,
            ) from e
        result = await dispatch(services, job_type, model, job_ctx)
    except Exception as exc:
        return _handle_failure(services, run_id, job_ctx, payload, to_job_error(exc))

    paused = not result.success and result.error_category == PAUSED_CATEGORY
    status = JobStatus.COMPLETED if result.success or paused else JobStatus.FAILED
    _update_status(
        services, job_ctx.db_job_id, status, result=result.to_dict(), attempts=job_ctx.attempt, skipped=paused
    )
    services.stuck_detector.reset_stuck_count(job_ctx.site_id, job_type)
    _emit(services, run_id, "job_result", job_ctx, result.to_dict())
    logger.info("Finished %s job %s: %s", job_type.value, job_ctx.db_job_id, result.message)
    return result.to_dict()


def _handle_failure(
    services: WorkerServices, run_id: str, job_ctx: JobContext, payload: Dict[str, Any], error: JobError
) -> Dict[str, Any]:
    services.error_tracking.log_error(
        ErrorLogEntry.from_error(
            error,
            job_id=job_ctx.db_job_id,
            job_type=job_ctx.job_type.value,
            queue=job_ctx.queue.value,
            site_id=job_ctx.site_id,
            attempts_made=job_ctx.attempt,
        )
    )

    if not error.retryable or should_move_to_dead_letter(error, job_ctx.attempt, job_ctx.max_attempts):
        result = JobResult(
            success=False,
            message=f"Moved to dead letter after {job_ctx.attempt} attempt(s)",
            error=error.message,
            error_category=error.category.value,
            error_severity=error.severity.value,
            retryable=False,
        )
        _update_status(
            services, job_ctx.db_job_id, JobStatus.FAILED, result=result.to_dict(), error=error.message, attempts=job_ctx.attempt
        )
        try:
            on_dead_letter(services, job_ctx.job_type, payload, error)
        except Exception as e:
            logger.error("Dead-letter hook failed for job %s: %s", job_ctx.db_job_id, e)
        _emit(services, run_id, "job_dead_letter", job_ctx, {"error": error.to_dict()})
        logger.error("Job %s (%s) dead-lettered: %s", job_ctx.db_job_id, job_ctx.job_type.value, error.message)
        return result.to_dict()

    delay = calculate_retry_delay(error, job_ctx.attempt) or QUEUE_CONFIG[job_ctx.queue].backoff_delay
    _update_status(services, job_ctx.db_job_id, JobStatus.RETRYING, error=error.message, attempts=job_ctx.attempt)
    _emit(services, run_id, "job_retry", job_ctx, {"error": error.to_dict(), "delay": delay})
    logger.warning(
        "Job %s (%s) failed on attempt %d, retrying in %.1fs: %s",
        job_ctx.db_job_id,
        job_ctx.job_type.value,
        job_ctx.attempt,
        delay,
        error.message,
    )
    raise Retry(defer=delay)


def _job_function(job_type: JobType) -> Function:
    async def job(ctx, db_job_id, payload):
        return await run_job(ctx, job_type.value, db_job_id, payload)

    job.__qualname__ = job.__name__ = job_type.function_name
    return func(job, name=job_type.function_name, timeout=QUEUE_CONFIG[queue_for(job_type)].timeout)


def functions_for(queue: QueueName) -> List[Function]:
    return [_job_function(job_type) for job_type, q in JOB_TYPE_TO_QUEUE.items() if q == queue]


async def startup(ctx: Dict[str, Any]) -> None:
    settings = load_settings()
    setup_logging(settings.log_level)
    ctx["services"] = build_services(settings, pool=ctx.get("redis"))
    logger.info("Worker started (db=%s)", settings.database.url)


async def shutdown(ctx: Dict[str, Any]) -> None:
    services: Optional[WorkerServices] = ctx.get("services")
    if services is not None:
        await services.close()


_settings = load_settings()


class _BaseWorkerSettings:
    redis_settings = _settings.redis.to_arq()
    on_startup = startup
    on_shutdown = shutdown
    max_tries = MAX_JOB_ATTEMPTS


class DomainWorkerSettings(_BaseWorkerSettings):
    queue_name = redis_queue_name(QueueName.DOMAIN)
    functions = functions_for(QueueName.DOMAIN)
    job_timeout = QUEUE_CONFIG[QueueName.DOMAIN].timeout


class MicrositeWorkerSettings(_BaseWorkerSettings):
    queue_name = redis_queue_name(QueueName.MICROSITE)
    functions = functions_for(QueueName.MICROSITE)
    job_timeout = QUEUE_CONFIG[QueueName.MICROSITE].timeout


class SiteWorkerSettings(_BaseWorkerSettings):
    queue_name = redis_queue_name(QueueName.SITE)
    functions = functions_for(QueueName.SITE)
    job_timeout = QUEUE_CONFIG[QueueName.SITE].timeout
    cron_jobs = build_cron_jobs(_settings.scheduler.enabled, run_job)
