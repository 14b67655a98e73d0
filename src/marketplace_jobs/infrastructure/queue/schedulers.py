"""
Recurring platform jobs, run by the site worker through ``arq.cron``.

Cron-born jobs have no record until they start; ``run_job`` creates one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from arq import cron
from arq.cron import CronJob

from marketplace_jobs.domain.types import QUEUE_CONFIG, JobType, QueueName


@dataclass(frozen=True)
class ScheduledJob:
    job_type: JobType
    description: str
    minute: Optional[Set[int]] = None
    hour: Optional[Set[int]] = None
    weekday: Optional[int] = None

    @property
    def name(self) -> str:
        return f"cron:{self.job_type.function_name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "job_type": self.job_type.value,
            "description": self.description,
            "minute": sorted(self.minute) if self.minute is not None else "*",
            "hour": sorted(self.hour) if self.hour is not None else "*",
            "weekday": self.weekday if self.weekday is not None else "*",
        }


SCHEDULED_JOBS: List[ScheduledJob] = [
    ScheduledJob(JobType.STUCK_TASK_DETECT, "Heal stuck jobs every 5 minutes", minute=set(range(0, 60, 5))),
    ScheduledJob(JobType.ERROR_PATTERN_CHECK, "Alert on error patterns hourly", minute={0}),
    ScheduledJob(JobType.REDIS_QUEUE_CLEANUP, "Drop old arq results hourly", minute={30}),
    ScheduledJob(JobType.COLLECTION_REFRESH, "Refresh microsite collections daily at 04:00", minute={0}, hour={4}),
    ScheduledJob(JobType.SSL_RENEWAL_CHECK, "Check certificate expiry daily at 05:00", minute={0}, hour={5}),
    ScheduledJob(JobType.ERROR_CLEANUP, "Delete old job errors Sundays at 06:00", minute={0}, hour={6}, weekday=6),
]


def get_scheduled_jobs() -> List[Dict[str, Any]]:
    return [job.to_dict() for job in SCHEDULED_JOBS]


def build_cron_jobs(enabled: bool, runner: Callable[..., Awaitable[Any]]) -> List[CronJob]:
    """
    arq cron jobs for the site worker; empty when the scheduler is disabled.

    ``runner`` is the worker's ``run_job``; each cron job calls it with no job
    record and an empty payload so the job type's defaults apply.
    """
    if not enabled:
        return []

    jobs = []
    for scheduled in SCHEDULED_JOBS:
        jobs.append(
            cron(
                _cron_entry(scheduled.job_type, runner),
                name=scheduled.name,
                minute=scheduled.minute,
                hour=scheduled.hour,
                weekday=scheduled.weekday,
                timeout=QUEUE_CONFIG[QueueName.SITE].timeout,
                unique=True,
                max_tries=QUEUE_CONFIG[QueueName.SITE].attempts,
            )
        )
    return jobs


def _cron_entry(job_type: JobType, runner: Callable[..., Awaitable[Any]]):
    async def scheduled_job(ctx):
        return await runner(ctx, job_type.value, None, {})

    scheduled_job.__qualname__ = f"cron_{job_type.function_name}"
    return scheduled_job
