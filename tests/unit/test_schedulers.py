from __future__ import annotations

import asyncio

from marketplace_jobs.domain.types import JobType
from marketplace_jobs.infrastructure.queue.schedulers import SCHEDULED_JOBS, build_cron_jobs, get_scheduled_jobs


async def _runner(ctx, job_type, db_job_id, payload):
    ctx.setdefault("calls", []).append((job_type, db_job_id, payload))
    return {"success": True}


def test_build_cron_jobs_disabled():
    assert build_cron_jobs(False, _runner) == []


def test_build_cron_jobs_enabled():
    jobs = build_cron_jobs(True, _runner)
    assert len(jobs) == len(SCHEDULED_JOBS)

    by_name = {job.name: job for job in jobs}
    stuck = by_name["cron:stuck_task_detect"]
    assert stuck.minute == set(range(0, 60, 5))
    assert stuck.unique is True
    assert stuck.max_tries == 3
    assert stuck.timeout_s == 600

    cleanup = by_name["cron:error_cleanup"]
    assert cleanup.weekday == 6
    assert cleanup.hour == {6}


def test_cron_entry_calls_runner_without_record():
    jobs = build_cron_jobs(True, _runner)
    ssl_check = next(job for job in jobs if job.name == "cron:ssl_renewal_check")
    ctx = {}
    assert asyncio.run(ssl_check.coroutine(ctx)) == {"success": True}
    assert ctx["calls"] == [("SSL_RENEWAL_CHECK", None, {})]


def test_get_scheduled_jobs_listing():
    listing = {job["job_type"]: job for job in get_scheduled_jobs()}
    assert set(listing) == {
        JobType.STUCK_TASK_DETECT.value,
        JobType.ERROR_PATTERN_CHECK.value,
        JobType.REDIS_QUEUE_CLEANUP.value,
        JobType.COLLECTION_REFRESH.value,
        JobType.SSL_RENEWAL_CHECK.value,
        JobType.ERROR_CLEANUP.value,
    }
    assert listing["COLLECTION_REFRESH"]["hour"] == [4]
    assert listing["ERROR_PATTERN_CHECK"]["hour"] == "*"
    assert listing["ERROR_CLEANUP"]["weekday"] == 6
