from __future__ import annotations

import pytest

from marketplace_jobs.application.events import make_event, new_run_id
from marketplace_jobs.domain.types import JobType, QueueName
from marketplace_jobs.infrastructure.event_log.sqlalchemy_event_log import SqlAlchemyEventLog


def test_sqlalchemy_event_log_persists_and_replays(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'marketplace_jobs_test.db'}"
    evlog = SqlAlchemyEventLog(db_url=db_url, auto_create_schema=True)

    first_try = new_run_id()
    second_try = new_run_id()
    evlog.append(
        make_event(
            run_id=first_try,
            type="job_start",
            job_type=JobType.SSL_PROVISION,
            queue=QueueName.DOMAIN,
            job_id="job-1",
            stage="start",
            attempt=1,
            payload={"domain_id": "d1"},
        )
    )
    evlog.append(
        make_event(
            run_id=first_try,
            type="job_retry",
            job_type=JobType.SSL_PROVISION,
            queue=QueueName.DOMAIN,
            job_id="job-1",
            stage="retry",
            attempt=1,
            payload={"delay_ms": 4000},
        )
    )
    evlog.append(
        make_event(run_id=second_try, type="job_result", job_type="SSL_PROVISION", job_id="job-1", stage="done", attempt=2)
    )

    streamed = list(evlog.stream(first_try))
    assert [e["stage"] for e in streamed] == ["start", "retry"]
    assert streamed[0]["job_type"] == "SSL_PROVISION"
    assert streamed[0]["queue"] == "domain"
    assert streamed[1]["payload"] == {"delay_ms": 4000}

    history = evlog.list_job_events("job-1")
    assert [e["attempt"] for e in history] == [1, 1, 2]
    assert [e["type"] for e in evlog.list_recent(event_type="job_result")] == ["job_result"]
    evlog.close()


def test_event_without_run_id_is_rejected(tmp_path):
    evlog = SqlAlchemyEventLog(db_url=f"sqlite:///{tmp_path / 'events.db'}")
    with pytest.raises(ValueError, match="run_id"):
        evlog.append({"type": "job_start"})
    evlog.close()
