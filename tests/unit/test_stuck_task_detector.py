from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from marketplace_jobs.application.services.stuck_task_detector import StuckTaskDetector, split_idempotency_key
from marketplace_jobs.domain.types import JobStatus, JobType


def _detector(services, minutes_ahead: float, **kw) -> StuckTaskDetector:
    return StuckTaskDetector(
        services.jobs,
        services.queues,
        services.error_tracking,
        clock=lambda: datetime.now(timezone.utc) + timedelta(minutes=minutes_ahead),
        **kw,
    )


def _enqueue(services, payload=None):
    return asyncio.run(services.queues.add_job(JobType.DOMAIN_VERIFY, payload or {"site_id": "s1", "domain_id": "d1"}))


def test_split_idempotency_key():
    assert split_idempotency_key("domain:abc123") == ("domain", "abc123")
    assert split_idempotency_key(None) is None
    assert split_idempotency_key("no-separator") is None


def test_fresh_jobs_are_not_stuck(services):
    _enqueue(services)
    assert _detector(services, 10).find_stuck_jobs() == []


def test_heals_stuck_pending_job(services, fake_pool):
    job_id = _enqueue(services)
    old_arq_id = fake_pool.enqueued[0]["job_id"]
    detector = _detector(services, 45)

    summary = asyncio.run(detector.detect_and_heal())
    assert summary["healed"] == 1
    assert summary["permanently_failed"] == 0
    [detail] = summary["details"]
    assert detail["job_id"] == job_id
    assert detail["action"] == "healed"

    assert services.jobs.get_job(job_id) is None
    new_record = services.jobs.get_job(detail["new_job_id"])
    assert new_record["status"] == JobStatus.PENDING.value
    assert new_record["payload"]["domain_id"] == "d1"
    assert old_arq_id not in fake_pool.queues["marketplace:queue:domain"]
    assert detector.get_stuck_count("s1", JobType.DOMAIN_VERIFY) == 1

    [logged] = services.error_store.list_errors(since=datetime.now(timezone.utc) - timedelta(minutes=5))
    assert logged["error_name"] == "StuckTaskHealed"
    assert logged["severity"] == "MEDIUM"


def test_running_threshold(services):
    job_id = _enqueue(services)
    services.jobs.update_status(job_id, JobStatus.RUNNING)

    # past the pending threshold but not the running one
    assert _detector(services, 45).find_stuck_jobs() == []
    [stuck] = _detector(services, 61).find_stuck_jobs()
    assert stuck["id"] == job_id


def test_fails_permanently_after_max_retries(services):
    _enqueue(services)
    detector = _detector(services, 45, max_retries=3)

    for _ in range(3):
        assert asyncio.run(detector.detect_and_heal())["healed"] == 1

    summary = asyncio.run(detector.detect_and_heal())
    assert summary["healed"] == 0
    assert summary["permanently_failed"] == 1
    failed = services.jobs.get_job(summary["details"][0]["job_id"])
    assert failed["status"] == JobStatus.FAILED.value
    assert failed["error"] == "Exceeded max retries (3) for stuck PENDING job"

    names = [e["error_name"] for e in services.error_store.list_errors(since=datetime.now(timezone.utc) - timedelta(minutes=5))]
    assert names.count("StuckTaskHealed") == 3
    assert names.count("StuckTaskPermanentFailure") == 1


def test_counts_are_per_site_and_type(services):
    detector = _detector(services, 45)
    _enqueue(services, {"site_id": "s1", "domain_id": "d1"})
    _enqueue(services, {"site_id": "s2", "domain_id": "d2"})
    asyncio.run(detector.detect_and_heal())

    assert detector.get_stuck_count("s1", "DOMAIN_VERIFY") == 1
    assert detector.get_stuck_count("s2", JobType.DOMAIN_VERIFY) == 1
    detector.reset_stuck_count("s1", JobType.DOMAIN_VERIFY)
    assert detector.get_stuck_count("s1", JobType.DOMAIN_VERIFY) == 0
    detector.clear_all_stuck_counts()
    assert detector.get_stuck_count("s2", JobType.DOMAIN_VERIFY) == 0


def test_failed_reenqueue_is_recorded(services, fake_pool):
    job_id = _enqueue(services)
    detector = _detector(services, 45)
    fake_pool.error = ConnectionError("redis went away")

    summary = asyncio.run(detector.detect_and_heal())
    assert summary["healed"] == 0
    [detail] = summary["details"]
    assert detail["action"] == "error"
    assert detail["error"] == "redis went away"

    [logged] = services.error_store.list_errors(since=datetime.now(timezone.utc) - timedelta(minutes=5))
    assert logged["error_name"] == "StuckTaskHealFailed"
    assert logged["job_id"] == job_id
    assert logged["severity"] == "CRITICAL"
    assert logged["context"]["payload"]["domain_id"] == "d1"
    assert services.jobs.get_job(job_id) is None
