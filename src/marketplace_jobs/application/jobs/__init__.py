"""
Job handlers keyed by job type.

A handler takes ``(services, payload, job_ctx)`` and returns a ``JobResult``;
failures are raised as ``JobError`` and handled by the worker.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional

from marketplace_jobs.core.errors import JobError
from marketplace_jobs.domain.types import JobContext, JobResult, JobType

from .collections import handle_collection_generate, handle_collection_refresh
from .domain import (
    handle_domain_register,
    handle_domain_verify,
    handle_ssl_provision,
    handle_ssl_renewal_check,
    mark_domain_failed,
)
from .maintenance import (
    handle_error_cleanup,
    handle_error_pattern_check,
    handle_queue_cleanup,
    handle_stuck_task_detect,
)

Handler = Callable[..., Awaitable[JobResult]]

HANDLERS: Dict[JobType, Handler] = {
    JobType.DOMAIN_REGISTER: handle_domain_register,
    JobType.DOMAIN_VERIFY: handle_domain_verify,
    JobType.SSL_PROVISION: handle_ssl_provision,
    JobType.SSL_RENEWAL_CHECK: handle_ssl_renewal_check,
    JobType.COLLECTION_GENERATE: handle_collection_generate,
    JobType.COLLECTION_REFRESH: handle_collection_refresh,
    JobType.STUCK_TASK_DETECT: handle_stuck_task_detect,
    JobType.ERROR_PATTERN_CHECK: handle_error_pattern_check,
    JobType.ERROR_CLEANUP: handle_error_cleanup,
    JobType.REDIS_QUEUE_CLEANUP: handle_queue_cleanup,
}


async def dispatch(services, job_type: JobType, payload, job_ctx: JobContext) -> JobResult:
    return await HANDLERS[JobType(job_type)](services, payload, job_ctx)


def on_dead_letter(services, job_type: JobType, payload: Dict, error: JobError) -> None:
    """Side effects when a job gives up for good."""
    domain_id: Optional[str] = (payload or {}).get("domain_id")
    if JobType(job_type) in (JobType.DOMAIN_VERIFY, JobType.SSL_PROVISION) and domain_id:
        mark_domain_failed(services, domain_id, error)


__all__ = ["HANDLERS", "Handler", "dispatch", "on_dead_letter"]
