from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from marketplace_jobs.application.services.error_tracking import ErrorLogEntry, ErrorTrackingService
from marketplace_jobs.core.errors import ConfigurationError, NetworkError
from marketplace_jobs.infrastructure.stores import SqlAlchemyErrorStore


@pytest.fixture
def error_store(provider):
    return SqlAlchemyErrorStore(provider=provider)


def _log(tracking, error, job_type="DOMAIN_VERIFY", **kw):
    tracking.log_error(ErrorLogEntry.from_error(error, job_id=kw.pop("job_id", "job-1"), job_type=job_type, **kw))


def test_from_error_captures_classification():
    try:
        raise ConnectionResetError("peer reset")
    except ConnectionResetError as e:
        err = NetworkError("Cloudflare unreachable", host="api.cloudflare.com", original_error=e)

    entry = ErrorLogEntry.from_error(err, job_id="j1", job_type="DOMAIN_VERIFY", queue="domain", attempts_made=2)
    assert entry.error_name == "NetworkError"
    assert entry.error_category == "NETWORK"
    assert entry.error_severity == "RECOVERABLE"
    assert entry.retryable is True
    assert entry.context == {"host": "api.cloudflare.com"}
    assert "ConnectionResetError" in entry.stack_trace


def test_stats(error_store):
    tracking = ErrorTrackingService(error_store)
    _log(tracking, NetworkError("a"))
    _log(tracking, NetworkError("b"), job_type="SSL_PROVISION")
    _log(tracking, ConfigurationError("no token"))

    stats = tracking.get_error_stats()
    assert stats["total"] == 3
    assert stats["by_category"] == {"NETWORK": 2, "CONFIGURATION": 1}
    assert stats["by_type"] == {"DOMAIN_VERIFY": 2, "SSL_PROVISION": 1}
    assert stats["critical_count"] == 1
    assert stats["retryable_count"] == 2
    assert stats["window_hours"] == 24


def test_pattern_alerts(error_store):
    sent = []
    tracking = ErrorTrackingService(error_store, alert_sink=sent.append)
    for i in range(3):
        _log(tracking, NetworkError(f"timeout {i}"), job_id=f"j{i}")
    _log(tracking, NetworkError("once"), job_type="SSL_PROVISION")

    alerts = tracking.check_error_patterns(threshold=3)
    assert [a.level for a in alerts] == ["warning"]
    assert alerts[0].context == {"job_type": "DOMAIN_VERIFY", "count": 3}
    assert sent == alerts

    _log(tracking, ConfigurationError("CLOUDFLARE_ACCOUNT_ID is not configured"), job_id="j9")
    alerts = tracking.check_error_patterns(threshold=10)
    assert [a.level for a in alerts] == ["critical"]
    assert alerts[0].context["job_ids"] == ["j9"]
    assert "CLOUDFLARE_ACCOUNT_ID" in alerts[0].message


def test_alert_sink_failure_is_swallowed(error_store):
    def broken_sink(alert):
        raise RuntimeError("webhook down")

    tracking = ErrorTrackingService(error_store, alert_sink=broken_sink)
    _log(tracking, ConfigurationError("bad"))
    assert len(tracking.check_error_patterns()) == 1


def test_cleanup_old_errors(error_store):
    tracking = ErrorTrackingService(error_store)
    old = ErrorLogEntry.from_error(NetworkError("old"), job_id="j-old", job_type="DOMAIN_VERIFY")
    old.timestamp = datetime.now(timezone.utc) - timedelta(days=45)
    tracking.log_error(old)
    _log(tracking, NetworkError("fresh"))

    assert tracking.cleanup_old_errors(retention_days=30) == 1
    assert tracking.get_error_stats(window=timedelta(days=365))["total"] == 1


class _BrokenStore:
    def add_error(self, **kwargs):
        raise RuntimeError("db down")


def test_log_error_never_raises():
    tracking = ErrorTrackingService(_BrokenStore())
    _log(tracking, NetworkError("x"))
