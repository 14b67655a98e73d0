from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marketplace_jobs.application.services.ssl_service import CertificateStatus, SSLService
from marketplace_jobs.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from marketplace_jobs.core.errors import ErrorSeverity, JobError, NetworkError
from tests.fakes import FakeDNS, FakeHttp

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


class RecordingSleep:
    def __init__(self):
        self.slept = []

    async def __call__(self, seconds: float) -> None:
        self.slept.append(seconds)


def _service(dns=None, *, http=None, breaker=None, max_wait=20.0):
    sleep = RecordingSleep()
    service = SSLService(
        dns or FakeDNS(),
        http=http,
        breaker=breaker,
        max_wait=max_wait,
        poll_interval=10.0,
        sleep=sleep,
        clock=lambda: NOW,
    )
    return service, sleep


def test_provision_returns_active_certificate():
    dns = FakeDNS()
    service, sleep = _service(dns)
    status = asyncio.run(service.provision_certificate("tours.example", zone_id="z1", ssl_mode="strict"))

    assert status.active is True
    assert status.zone_id == "z1"
    assert "*.example.com" in status.hosts
    assert sleep.slept == []
    assert ("configure_ssl", ("z1", "strict")) in dns.calls


def test_pending_certificate_is_retried_later():
    dns = FakeDNS(ssl_status="pending")
    service, sleep = _service(dns)

    with pytest.raises(JobError, match="not active yet") as exc_info:
        asyncio.run(service.provision_certificate("tours.example", zone_id="z1"))
    err = exc_info.value
    assert err.severity == ErrorSeverity.RECOVERABLE
    assert err.retryable is True
    assert err.context["waited"] == 20.0
    assert sleep.slept == [10.0, 10.0]
    assert [name for name, _ in dns.calls].count("get_ssl_status") == 3


def test_pending_certificate_does_not_trip_breaker():
    breaker = CircuitBreaker("cloudflare-api", CircuitBreakerConfig(failure_threshold=2))
    service, _ = _service(FakeDNS(ssl_status="pending"), breaker=breaker, max_wait=0)

    for _ in range(3):
        with pytest.raises(JobError, match="not active yet"):
            asyncio.run(service.provision_certificate("tours.example", zone_id="z1"))
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failures == 0


def test_cloudflare_failures_trip_breaker():
    dns = FakeDNS()

    async def down(zone_id, mode="full"):
        raise NetworkError("cloudflare unreachable")

    dns.configure_ssl = down
    breaker = CircuitBreaker("cloudflare-api", CircuitBreakerConfig(failure_threshold=2))
    service, _ = _service(dns, breaker=breaker)

    for _ in range(2):
        with pytest.raises(NetworkError):
            asyncio.run(service.provision_certificate("tours.example", zone_id="z1"))
    assert breaker.state == CircuitState.OPEN
    with pytest.raises(JobError, match="Circuit breaker is OPEN"):
        asyncio.run(service.provision_certificate("tours.example", zone_id="z1"))


def test_zone_is_looked_up_when_unknown():
    service, _ = _service()
    status = asyncio.run(service.get_certificate_status("tours.example"))
    assert status.zone_id == "zone-tours.example"


def test_renew_reenables_universal_ssl():
    dns = FakeDNS()
    service, _ = _service(dns)
    status = asyncio.run(service.renew_certificate("tours.example", zone_id="z1"))

    assert status.active is True
    assert ("enable_universal_ssl", ("z1",)) in dns.calls


def test_is_expiring_soon():
    service, _ = _service()
    soon = CertificateStatus(status="active", expires_at=NOW + timedelta(days=10))
    later = CertificateStatus(status="active", expires_at=NOW + timedelta(days=60))
    assert service.is_expiring_soon(soon) is True
    assert service.is_expiring_soon(later) is False
    assert service.is_expiring_soon(CertificateStatus(status="pending")) is True


def test_validate_certificate_https_and_redirect():
    http = FakeHttp(
        {
            "https://tours.example": (200, None),
            "http://tours.example": (301, "https://tours.example/"),
        }
    )
    service, _ = _service(http=http)
    report = asyncio.run(service.validate_certificate("tours.example"))

    assert report["valid"] is True
    assert report["redirects_to_https"] is True
    assert report["errors"] == []
    assert http.checked_urls == ["https://tours.example", "http://tours.example"]


def test_validate_certificate_reports_problems():
    http = FakeHttp(
        {
            "https://tours.example": (None, None),
            "http://tours.example": (200, None),
        }
    )
    service, _ = _service(http=http)
    report = asyncio.run(service.validate_certificate("tours.example"))

    assert report["valid"] is False
    assert report["errors"] == ["HTTPS not reachable (status=None)", "HTTP does not redirect to HTTPS"]


def test_validate_certificate_needs_http_client():
    service, _ = _service()
    with pytest.raises(RuntimeError, match="needs an http client"):
        asyncio.run(service.validate_certificate("tours.example"))
