"""
Finds jobs that never started or never finished and puts them back in line.

A job is stuck when it has been PENDING longer than ``pending_minutes`` or
RUNNING longer than ``running_minutes``. Each (site, job type) pair may be
healed ``max_retries`` times per worker process; after that the job is failed
for good and a critical error is recorded.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from marketplace_jobs.application.services.error_tracking import ErrorLogEntry
from marketplace_jobs.core.errors import ErrorCategory
from marketplace_jobs.domain.types import JobOptions, JobStatus, JobType, enum_value

logger = logging.getLogger(__name__)

StuckKey = Tuple[Optional[str], str]


def split_idempotency_key(key: Optional[str]) -> Optional[Tuple[str, str]]:
    """``"<queue>:<arq job id>"`` -> (queue, arq job id)."""
    if not key or ":" not in key:
        return None
    queue, arq_job_id = key.split(":", 1)
    return queue, arq_job_id


class StuckTaskDetector:
    def __init__(
        self,
        job_store,
        queues,
        error_tracking,
        *,
        pending_minutes: int = 30,
        running_minutes: int = 60,
        max_retries: int = 3,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.job_store = job_store
        self.queues = queues
        self.error_tracking = error_tracking
        self.pending_threshold = timedelta(minutes=pending_minutes)
        self.running_threshold = timedelta(minutes=running_minutes)
        self.max_retries = max_retries
        self._clock = clock
        self._counts: Dict[StuckKey, int] = {}

    def find_stuck_jobs(self) -> List[Dict[str, Any]]:
        now = self._clock()
        pending = self.job_store.list_stuck(status=JobStatus.PENDING, older_than=now - self.pending_threshold)
        running = self.job_store.list_stuck(status=JobStatus.RUNNING, older_than=now - self.running_threshold)
        return pending + running

    async def detect_and_heal(self) -> Dict[str, Any]:
        healed = 0
        failed = 0
        details: List[Dict[str, Any]] = []

        for job in self.find_stuck_jobs():
            key: StuckKey = (job.get("site_id"), job["type"])
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count
            detail = {"job_id": job["id"], "type": job["type"], "site_id": job.get("site_id"), "status": job["status"], "count": count}

            if count > self.max_retries:
                self._fail_permanently(job, count)
                failed += 1
                detail["action"] = "failed"
            else:
                try:
                    detail["new_job_id"] = await self._heal(job, count)
                    healed += 1
                    detail["action"] = "healed"
                except Exception as e:
                    logger.error("Could not heal stuck job %s: %s", job["id"], e)
                    detail["action"] = "error"
                    detail["error"] = str(e)
            details.append(detail)

        if details:
            logger.warning("Stuck task sweep: healed=%d permanently_failed=%d", healed, failed)
        return {"healed": healed, "permanently_failed": failed, "details": details}

    async def _heal(self, job: Dict[str, Any], count: int) -> str:
        parts = split_idempotency_key(job.get("idempotency_key"))
        if parts:
            await self.queues.remove_job(*parts)
        self.job_store.delete_job(job["id"])
        try:
            new_id = await self.queues.add_job(
                JobType(job["type"]),
                job.get("payload") or {},
                JobOptions(priority=job.get("priority") or 5),
            )
        except Exception as e:
            # The stuck record is gone; the payload in the error log is all that is left of the job.
            self.error_tracking.log_error(
                ErrorLogEntry(
                    job_id=job["id"],
                    job_type=job["type"],
                    queue=job.get("queue", ""),
                    site_id=job.get("site_id"),
                    error_name="StuckTaskHealFailed",
                    error_message=f"Job {job['id']} was removed but could not be re-enqueued: {e}",
                    error_category=ErrorCategory.UNKNOWN.value,
                    error_severity="CRITICAL",
                    retryable=True,
                    attempts_made=count,
                    context={
                        "stuck_status": job["status"],
                        "payload": job.get("payload") or {},
                        "priority": job.get("priority"),
                    },
                )
            )
            raise
        self.error_tracking.log_error(
            ErrorLogEntry(
                job_id=new_id,
                job_type=job["type"],
                queue=job.get("queue", ""),
                site_id=job.get("site_id"),
                error_name="StuckTaskHealed",
                error_message=f"Job {job['id']} was stuck in {job['status']}; re-enqueued as {new_id} (occurrence {count})",
                error_category=ErrorCategory.UNKNOWN.value,
                error_severity="MEDIUM" if count == 1 else "HIGH",
                retryable=True,
                attempts_made=count,
                context={"original_job_id": job["id"], "stuck_status": job["status"]},
            )
        )
        logger.info("Re-enqueued stuck job %s (%s) as %s", job["id"], job["type"], new_id)
        return new_id

    def _fail_permanently(self, job: Dict[str, Any], count: int) -> None:
        message = f"Exceeded max retries ({self.max_retries}) for stuck {job['status']} job"
        self.job_store.update_status(job["id"], JobStatus.FAILED, error=message)
        self.error_tracking.log_error(
            ErrorLogEntry(
                job_id=job["id"],
                job_type=job["type"],
                queue=job.get("queue", ""),
                site_id=job.get("site_id"),
                error_name="StuckTaskPermanentFailure",
                error_message=message,
                error_category=ErrorCategory.UNKNOWN.value,
                error_severity="CRITICAL",
                retryable=False,
                attempts_made=count,
                context={"stuck_status": job["status"]},
            )
        )

    def get_stuck_count(self, site_id: Optional[str], job_type: str) -> int:
        return self._counts.get((site_id, enum_value(job_type)), 0)

    def reset_stuck_count(self, site_id: Optional[str], job_type: str) -> None:
        self._counts.pop((site_id, enum_value(job_type)), None)

    def clear_all_stuck_counts(self) -> None:
        self._counts.clear()
