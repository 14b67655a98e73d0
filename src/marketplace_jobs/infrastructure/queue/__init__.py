from .job_manager import JobInfo, JobManager
from .queues import QueueRegistry, dedup_key, redis_queue_name
from .schedulers import SCHEDULED_JOBS, build_cron_jobs, get_scheduled_jobs
from .services import WorkerServices, build_services

__all__ = [
    "JobInfo",
    "JobManager",
    "QueueRegistry",
    "SCHEDULED_JOBS",
    "WorkerServices",
    "build_cron_jobs",
    "build_services",
    "dedup_key",
    "get_scheduled_jobs",
    "redis_queue_name",
]
