"""
Job Manager - operator actions on individual jobs.

Provides:
- arq-side job inspection
- Job cancellation (queued jobs only)
- Job retry (failed or cancelled jobs)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from arq.constants import default_queue_name
from arq.jobs import Job, JobStatus as ArqJobStatus

from marketplace_jobs.application.services.stuck_task_detector import split_idempotency_key
from marketplace_jobs.domain.types import JobOptions, JobStatus, JobType
from marketplace_jobs.infrastructure.queue.queues import redis_queue_name


@dataclass
class JobInfo:
    """Job information as arq sees it"""
    job_id: str
    function: str
    status: str  # deferred, queued, in_progress, complete, not_found
    enqueue_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    finish_time: Optional[datetime] = None
    success: Optional[bool] = None
    result: Any = None
    args: tuple = field(default_factory=tuple)
    job_try: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "function": self.function,
            "status": self.status,
            "enqueue_time": self.enqueue_time.isoformat() if self.enqueue_time else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "finish_time": self.finish_time.isoformat() if self.finish_time else None,
            "success": self.success,
            "result": self.result if self.success is not False else repr(self.result),
            "args": list(self.args),
            "job_try": self.job_try,
        }


class JobManager:
    """
    Job Manager - combines the job records with the arq queues.

    Usage:
        manager = JobManager(registry)
        await manager.cancel_job(job_id)
    """

    def __init__(self, registry):
        self.registry = registry
        self.job_store = registry.job_store

    async def get_job_info(self, arq_job_id: str, queue: Optional[str] = None) -> Optional[JobInfo]:
        """Get arq's view of a job; ``queue`` is needed for queued jobs on non-default queues."""
        pool = await self.registry.ensure_pool()
        job = Job(arq_job_id, pool, _queue_name=redis_queue_name(queue) if queue else default_queue_name)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None

        info = await job.info()
        if info is None:
            return JobInfo(job_id=arq_job_id, function="unknown", status=status.value)

        return JobInfo(
            job_id=arq_job_id,
            function=info.function,
            status=status.value,
            enqueue_time=info.enqueue_time,
            start_time=getattr(info, "start_time", None),
            finish_time=getattr(info, "finish_time", None),
            success=getattr(info, "success", None),
            result=getattr(info, "result", None),
            args=info.args,
            job_try=info.job_try,
        )

    async def get_job_info_for_record(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Job record plus arq's view of it, for the CLI."""
        record = self.job_store.get_job(job_id)
        if record is None:
            return None
        parts = split_idempotency_key(record.get("idempotency_key"))
        arq_info = await self.get_job_info(parts[1], parts[0]) if parts else None
        return {**record, "arq": arq_info.to_dict() if arq_info else None}

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a job that has not started yet.

        Running jobs cannot be interrupted; terminal jobs are left alone.
        """
        record = self.job_store.get_job(job_id)
        if record is None:
            return False
        status = JobStatus(record["status"])
        if status not in (JobStatus.PENDING, JobStatus.SCHEDULED, JobStatus.RETRYING):
            return False

        parts = split_idempotency_key(record.get("idempotency_key"))
        if parts:
            await self.registry.remove_job(*parts)
        return self.job_store.update_status(job_id, JobStatus.CANCELLED, error="Cancelled by operator")

    async def retry_job(self, job_id: str) -> Optional[str]:
        """
        Retry a failed or cancelled job by enqueuing its payload again.

        Returns the new job id, None if the job cannot be retried.
        """
        record = self.job_store.get_job(job_id)
        if record is None or record["status"] not in (JobStatus.FAILED.value, JobStatus.CANCELLED.value):
            return None
        payload = dict(record.get("payload") or {})
        if record.get("site_id") and not payload.get("site_id"):
            payload["site_id"] = record["site_id"]
        return await self.registry.add_job(
            JobType(record["type"]),
            payload,
            JobOptions(priority=record.get("priority") or 5),
        )
