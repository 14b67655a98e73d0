from __future__ import annotations

import asyncio

import pytest
from arq import Retry

from marketplace_jobs.domain.types import DomainStatus, JobOptions, JobStatus, JobType
from marketplace_jobs.infrastructure.queue import arq_worker
from tests.fakes import FakeDNS


def _ctx(services, job_id="arq-1", job_try=1):
    return {"services": services, "job_id": job_id, "job_try": job_try}


def _enqueue(services, job_type, payload, **opts):
    return asyncio.run(services.queues.add_job(job_type, payload, JobOptions(**opts)))


def _verify_job(services, *, zone_status="pending", registrar="cloudflare"):
    services._dns = FakeDNS(zone_status=zone_status)
    domain = services.domains.create_domain(domain="tours.example", site_id=None, registrar=registrar)
    payload = {"domain_id": domain["id"], "verification_method": "dns"}
    return domain, _enqueue(services, JobType.DOMAIN_VERIFY, payload), payload


def test_successful_job_is_completed(services):
    job_id = _enqueue(services, JobType.ERROR_CLEANUP, {"retention_days": 7})

    result = asyncio.run(arq_worker.run_job(_ctx(services), "ERROR_CLEANUP", job_id, {"retention_days": 7}))
    assert result["success"] is True
    assert result["data"] == {"deleted": 0}

    record = services.jobs.get_job(job_id)
    assert record["status"] == JobStatus.COMPLETED.value
    assert record["attempts"] == 1
    assert record["result"]["success"] is True
    assert [e["type"] for e in services.event_log.events] == ["job_enqueue", "job_start", "job_result"]


def test_retryable_failure_raises_retry(services):
    _, job_id, payload = _verify_job(services)

    with pytest.raises(Retry) as exc_info:
        asyncio.run(arq_worker.run_job(_ctx(services), "DOMAIN_VERIFY", job_id, payload))
    assert exc_info.value.defer_score > 0

    record = services.jobs.get_job(job_id)
    assert record["status"] == JobStatus.RETRYING.value
    assert "waiting for nameservers" in record["error"]
    assert services.event_log.of_type("job_retry")

    [err] = services.error_tracking.get_error_stats()["by_category"].items()
    assert err == ("EXTERNAL_API", 1)


def test_last_attempt_goes_to_dead_letter(services):
    domain, job_id, payload = _verify_job(services)
    assert services.jobs.get_job(job_id)["max_attempts"] == 5

    result = asyncio.run(arq_worker.run_job(_ctx(services, job_try=5), "DOMAIN_VERIFY", job_id, payload))
    assert result["success"] is False
    assert result["message"] == "Moved to dead letter after 5 attempt(s)"

    assert services.jobs.get_job(job_id)["status"] == JobStatus.FAILED.value
    failed_domain = services.domains.get_domain(domain["id"])
    assert failed_domain["status"] == DomainStatus.FAILED.value
    assert "waiting for nameservers" in failed_domain["error_message"]
    assert services.event_log.of_type("job_dead_letter")


def test_permanent_error_is_dead_lettered_on_first_attempt(services):
    job_id = _enqueue(services, JobType.SSL_PROVISION, {"domain_id": "nope"})

    result = asyncio.run(arq_worker.run_job(_ctx(services), "SSL_PROVISION", job_id, {"domain_id": "nope"}))
    assert result["error_category"] == "NOT_FOUND"
    record = services.jobs.get_job(job_id)
    assert record["status"] == JobStatus.FAILED.value
    assert record["error"] == "Domain not found: nope"


def test_invalid_payload_fails_without_retry(services):
    record = services.jobs.create_job(job_type=JobType.DOMAIN_VERIFY, queue="domain", payload={})

    result = asyncio.run(arq_worker.run_job(_ctx(services), "DOMAIN_VERIFY", record["id"], {}))
    assert result["error_category"] == "BUSINESS_LOGIC"
    assert services.jobs.get_job(record["id"])["status"] == JobStatus.FAILED.value


def test_paused_job_is_completed_not_retried(services):
    services.platform.update_platform_settings(all_autonomous_processes_paused=True, pause_reason="incident")
    job_id = _enqueue(services, JobType.COLLECTION_REFRESH, {})

    result = asyncio.run(arq_worker.run_job(_ctx(services), "COLLECTION_REFRESH", job_id, {}))
    assert result["success"] is False
    assert result["error_category"] == "paused"
    assert services.jobs.get_job(job_id)["status"] == JobStatus.COMPLETED.value


def test_cron_job_gets_a_single_record_across_tries(services):
    ctx = _ctx(services, job_id="cron:stuck_task_detect:123")
    asyncio.run(arq_worker.run_job(ctx, "STUCK_TASK_DETECT", None, {}))
    asyncio.run(arq_worker.run_job({**ctx, "job_try": 2}, "STUCK_TASK_DETECT", None, {}))

    [record] = services.jobs.list_jobs(queue="site")
    assert record["type"] == "STUCK_TASK_DETECT"
    assert record["status"] == JobStatus.COMPLETED.value
    assert record["attempts"] == 2
    assert record["idempotency_key"] == "site:cron:stuck_task_detect:123"


def test_success_resets_stuck_count(services):
    services.stuck_detector._counts[(None, "ERROR_CLEANUP")] = 2
    job_id = _enqueue(services, JobType.ERROR_CLEANUP, {})
    asyncio.run(arq_worker.run_job(_ctx(services), "ERROR_CLEANUP", job_id, {}))
    assert services.stuck_detector.get_stuck_count(None, JobType.ERROR_CLEANUP) == 0


def test_worker_settings_per_queue():
    assert arq_worker.DomainWorkerSettings.queue_name == "marketplace:queue:domain"
    assert arq_worker.MicrositeWorkerSettings.job_timeout == 300
    assert arq_worker.SiteWorkerSettings.max_tries == 10

    names = {f.name for f in arq_worker.DomainWorkerSettings.functions}
    assert names == {"domain_register", "domain_verify", "ssl_provision"}
    assert {f.name for f in arq_worker.MicrositeWorkerSettings.functions} == {"collection_generate"}


def test_paused_registrations_do_not_use_up_the_daily_limit(services):
    services.platform.update_platform_settings(max_domain_registrations_per_day=2)
    site = services.domains.create_site(name="Paused Tours")
    services.domains.set_site_paused(site["id"], True, reason="billing")

    for name in ("one.example", "two.example"):
        payload = {"site_id": site["id"], "domain": name}
        job_id = _enqueue(services, JobType.DOMAIN_REGISTER, payload)
        result = asyncio.run(arq_worker.run_job(_ctx(services), "DOMAIN_REGISTER", job_id, payload))
        assert result["error_category"] == "paused"
        record = services.jobs.get_job(job_id)
        assert record["status"] == JobStatus.COMPLETED.value
        assert record["skipped"] is True

    services.domains.set_site_paused(site["id"], False)
    decision = services.safeguards.check_rate_limit("DOMAIN_REGISTER")
    assert decision.allowed is True


def test_job_from_paused_queue_is_put_back(services, fake_pool):
    job_id = _enqueue(services, JobType.ERROR_CLEANUP, {"retention_days": 7})
    asyncio.run(services.queues.pause_queue("site"))

    result = asyncio.run(arq_worker.run_job(_ctx(services), "ERROR_CLEANUP", job_id, {"retention_days": 7}))
    assert result["deferred"] is True
    assert result["job_id"] == job_id

    record = services.jobs.get_job(job_id)
    assert record["status"] == JobStatus.PENDING.value
    assert record["attempts"] == 0
    requeued = fake_pool.enqueued[-1]
    assert requeued["args"] == (job_id, {"retention_days": 7})
    assert requeued["defer_by"].total_seconds() == arq_worker.PAUSED_RECHECK_SECONDS
    assert record["idempotency_key"] == f"site:{requeued['job_id']}"
    assert services.event_log.of_type("job_start") == []

    asyncio.run(services.queues.resume_queue("site"))
    result = asyncio.run(arq_worker.run_job(_ctx(services), "ERROR_CLEANUP", job_id, {"retention_days": 7}))
    assert result["success"] is True
    assert services.jobs.get_job(job_id)["status"] == JobStatus.COMPLETED.value


def test_cron_run_on_paused_queue_is_skipped(services, fake_pool):
    asyncio.run(services.queues.pause_queue("site"))
    result = asyncio.run(arq_worker.run_job(_ctx(services, job_id="cron:x"), "ERROR_CLEANUP", None, {}))
    assert result == {"deferred": False, "reason": "queue site is paused"}
    assert services.jobs.list_jobs() == []
    assert fake_pool.enqueued == []
