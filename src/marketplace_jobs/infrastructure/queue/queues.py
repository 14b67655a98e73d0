"""
Producer side of the job queues.

Every job lives twice: a row in the relational store (status, attempts,
result) and an arq entry in Redis. ``add_job`` creates the row first and only
then enqueues, so a worker never sees a job it cannot find; if the enqueue
fails the row is deleted again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Union

from arq.connections import ArqRedis, RedisSettings, create_pool
from arq.constants import job_key_prefix, result_key_prefix
from pydantic import ValidationError

from marketplace_jobs.application.events import make_event, new_run_id
from marketplace_jobs.core.errors import BusinessLogicError, ErrorCategory, ErrorSeverity, JobError
from marketplace_jobs.domain.types import (
    ALL_SITES,
    PAYLOAD_MODELS,
    QUEUE_CONFIG,
    SITE_OPTIONAL_JOB_TYPES,
    JobOptions,
    JobStatus,
    JobType,
    QueueName,
    queue_for,
)

logger = logging.getLogger(__name__)

QUEUE_KEY_PREFIX = "marketplace:queue:"
_WAITING_STATUSES = (JobStatus.PENDING.value, JobStatus.SCHEDULED.value, JobStatus.RETRYING.value)


def redis_queue_name(queue: Union[QueueName, str]) -> str:
    """Redis key of the arq queue backing ``queue``."""
    return f"{QUEUE_KEY_PREFIX}{QueueName(queue).value}"


def paused_flag_key(queue: Union[QueueName, str]) -> str:
    """Redis key whose presence pauses ``queue``."""
    return f"{redis_queue_name(queue)}:paused"


def dedup_key(job_type: JobType, site_id: Optional[str], payload: Mapping[str, Any]) -> str:
    """
    Jobs with the same key are not enqueued twice while one is still active.

    The key is the job type and site, narrowed by the record the job acts on
    (domain or microsite) when there is one.
    """
    subject = payload.get("domain_id") or payload.get("microsite_id") or payload.get("domain") or ""
    return f"{job_type.value}:{site_id or '*'}:{subject}"


def idempotency_key(queue: QueueName, arq_job_id: str) -> str:
    return f"{queue.value}:{arq_job_id}"


class QueueRegistry:
    def __init__(
        self,
        job_store,
        *,
        redis_settings: Optional[RedisSettings] = None,
        pool: Optional[ArqRedis] = None,
        event_log=None,
        clock=lambda: datetime.now(timezone.utc),
    ):
        self.job_store = job_store
        self.redis_settings = redis_settings or RedisSettings()
        self.event_log = event_log
        self._pool = pool
        self._owns_pool = pool is None
        self._clock = clock

    async def ensure_pool(self) -> ArqRedis:
        if self._pool is None:
            self._pool = await create_pool(self.redis_settings)
        return self._pool

    async def close(self) -> None:
        # An injected pool belongs to the caller.
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None

    # ------------------------------------------------------------------ producer

    async def add_job(
        self,
        job_type: Union[JobType, str],
        payload: Optional[Mapping[str, Any]] = None,
        options: Optional[JobOptions] = None,
    ) -> str:
        """Validate, persist and enqueue a job; returns the job record id."""
        job_type = JobType(job_type)
        queue = queue_for(job_type)
        options = options or JobOptions()
        raw = dict(payload or {})

        site_id = raw.get("site_id")
        if site_id == ALL_SITES:
            site_id = None
            raw.pop("site_id")
        elif not site_id and job_type not in SITE_OPTIONAL_JOB_TYPES and not raw.get("domain_id"):
            raise BusinessLogicError(f"site_id is required for {job_type.value} jobs", context={"job_type": job_type.value})

        try:
            model = PAYLOAD_MODELS[job_type].model_validate(raw)
        except ValidationError as e:
            raise BusinessLogicError(
                f"Invalid payload for {job_type.value}: {e.error_count()} validation error(s)",
                context={"job_type": job_type.value, "errors": [err["msg"] for err in e.errors()]},
                original_error=e,
            ) from e
        data = model.model_dump(mode="json")

        key = dedup_key(job_type, site_id, data)
        existing = self.job_store.find_active_duplicate(key)
        if existing:
            logger.info("Skipping duplicate %s job; %s is still %s", job_type.value, existing["id"], existing["status"])
            return existing["id"]

        delay = float(options.delay or 0)
        config = QUEUE_CONFIG[queue]
        record = self.job_store.create_job(
            job_type=job_type,
            queue=queue,
            payload=data,
            site_id=site_id,
            dedup_key=key,
            status=JobStatus.SCHEDULED if delay > 0 else JobStatus.PENDING,
            priority=options.priority,
            max_attempts=options.attempts or config.attempts,
            scheduled_for=self._clock() + timedelta(seconds=delay) if delay > 0 else None,
        )
        job_id = record["id"]

        try:
            pool = await self.ensure_pool()
            job = await pool.enqueue_job(
                job_type.function_name,
                job_id,
                data,
                _queue_name=redis_queue_name(queue),
                _defer_by=timedelta(seconds=delay) if delay > 0 else None,
            )
            if job is None:
                raise JobError(
                    f"arq refused to enqueue {job_type.value} job {job_id}",
                    category=ErrorCategory.UNKNOWN,
                    severity=ErrorSeverity.RECOVERABLE,
                )
        except Exception:
            logger.error("Enqueue of %s job %s failed; removing record", job_type.value, job_id)
            self.job_store.delete_job(job_id)
            raise

        self.job_store.set_idempotency_key(job_id, idempotency_key(queue, job.job_id))
        if self.event_log is not None:
            self.event_log.append(
                make_event(
                    run_id=new_run_id(),
                    type="job_enqueue",
                    job_type=job_type,
                    queue=queue,
                    job_id=job_id,
                    stage="enqueue",
                    payload={"arq_job_id": job.job_id, "delay": delay, "priority": options.priority},
                )
            )
        logger.info("Enqueued %s job %s on %s (arq %s)", job_type.value, job_id, queue.value, job.job_id)
        return job_id

    async def remove_job(self, queue: Union[QueueName, str], arq_job_id: str) -> bool:
        """Drop a queued (not yet running) entry from Redis."""
        pool = await self.ensure_pool()
        removed = await pool.zrem(redis_queue_name(queue), arq_job_id)
        await pool.delete(job_key_prefix + arq_job_id)
        return bool(removed)

    # ------------------------------------------------------------------ control

    async def pause_queue(self, queue: Union[QueueName, str]) -> None:
        """Workers put jobs from a paused queue back instead of running them."""
        queue = QueueName(queue)
        pool = await self.ensure_pool()
        await pool.set(paused_flag_key(queue), self._clock().isoformat())
        logger.warning("Queue %s paused", queue.value)

    async def resume_queue(self, queue: Union[QueueName, str]) -> None:
        queue = QueueName(queue)
        pool = await self.ensure_pool()
        await pool.delete(paused_flag_key(queue))
        logger.info("Queue %s resumed", queue.value)

    async def is_queue_paused(self, queue: Union[QueueName, str]) -> bool:
        pool = await self.ensure_pool()
        return bool(await pool.exists(paused_flag_key(queue)))

    async def requeue(
        self, job_type: Union[JobType, str], job_id: str, payload: Mapping[str, Any], *, delay: float
    ) -> str:
        """Enqueue an existing record again under a new arq id; returns that id."""
        job_type = JobType(job_type)
        queue = queue_for(job_type)
        pool = await self.ensure_pool()
        job = await pool.enqueue_job(
            job_type.function_name,
            job_id,
            dict(payload),
            _queue_name=redis_queue_name(queue),
            _defer_by=timedelta(seconds=delay),
        )
        if job is None:
            raise JobError(
                f"arq refused to requeue {job_type.value} job {job_id}",
                category=ErrorCategory.UNKNOWN,
                severity=ErrorSeverity.RECOVERABLE,
            )
        self.job_store.set_idempotency_key(job_id, idempotency_key(queue, job.job_id))
        return job.job_id

    async def drain_queue(self, queue: Union[QueueName, str]) -> Dict[str, Any]:
        """
        Drop every waiting entry of ``queue`` from Redis and cancel its records.

        Jobs already running finish normally.
        """
        queue = QueueName(queue)
        pool = await self.ensure_pool()
        key = redis_queue_name(queue)
        members = [m.decode() if isinstance(m, bytes) else str(m) for m in await pool.zrange(key, 0, -1)]
        if members:
            await pool.delete(*(job_key_prefix + arq_job_id for arq_job_id in members))
        await pool.delete(key)

        cancelled = 0
        for arq_job_id in members:
            record = self.job_store.find_by_idempotency_key(idempotency_key(queue, arq_job_id))
            if record is None or record["status"] not in _WAITING_STATUSES:
                continue
            self.job_store.update_status(record["id"], JobStatus.CANCELLED, error=f"Queue {queue.value} drained")
            cancelled += 1

        logger.warning("Drained queue %s: %d entries removed, %d jobs cancelled", queue.value, len(members), cancelled)
        return {"queue": queue.value, "removed": len(members), "cancelled": cancelled}

    # ------------------------------------------------------------------ inspection

    def get_queue_timeout(self, queue: Union[QueueName, str]) -> int:
        return QUEUE_CONFIG[QueueName(queue)].timeout

    async def get_queue_metrics(self, queue: Union[QueueName, str]) -> Dict[str, Any]:
        queue = QueueName(queue)
        pool = await self.ensure_pool()
        waiting = await pool.zcard(redis_queue_name(queue))
        counts = self.job_store.count_by_status(queue)
        return {
            "queue": queue.value,
            "waiting": int(waiting or 0),
            "pending": counts.get(JobStatus.PENDING.value, 0) + counts.get(JobStatus.SCHEDULED.value, 0),
            "running": counts.get(JobStatus.RUNNING.value, 0),
            "retrying": counts.get(JobStatus.RETRYING.value, 0),
            "completed": counts.get(JobStatus.COMPLETED.value, 0),
            "failed": counts.get(JobStatus.FAILED.value, 0),
            "cancelled": counts.get(JobStatus.CANCELLED.value, 0),
            "timeout": QUEUE_CONFIG[queue].timeout,
        }

    async def get_all_queue_metrics(self) -> Dict[str, Dict[str, Any]]:
        return {queue.value: await self.get_queue_metrics(queue) for queue in QueueName}

    async def _used_memory(self, pool: ArqRedis) -> Optional[int]:
        info = await pool.info("memory")
        value = (info or {}).get("used_memory")
        return int(value) if value is not None else None

    async def clean_all_queues(self, *, completed_max_age: int = 3600, failed_max_age: int = 86400) -> Dict[str, Any]:
        """Delete arq result keys older than the given ages (seconds)."""
        pool = await self.ensure_pool()
        before = await self._used_memory(pool)
        now = self._clock()

        removed_completed = 0
        removed_failed = 0
        for result in await pool.all_job_results():
            max_age = completed_max_age if result.success else failed_max_age
            if result.finish_time is None or (now - result.finish_time).total_seconds() <= max_age:
                continue
            await pool.delete(result_key_prefix + result.job_id)
            if result.success:
                removed_completed += 1
            else:
                removed_failed += 1

        after = await self._used_memory(pool)
        logger.info(
            "Queue cleanup removed %d completed and %d failed results (memory %s -> %s)",
            removed_completed,
            removed_failed,
            before,
            after,
        )
        return {
            "removed_completed": removed_completed,
            "removed_failed": removed_failed,
            "memory_before": before,
            "memory_after": after,
        }
