"""
Edge SSL for tenant domains, served by Cloudflare Universal SSL.

Provisioning configures the zone (SSL mode, HTTPS rewrites and redirects,
proxied records) and then waits a bounded time for the certificate pack to
become active. If it is still pending the caller gets a retryable error and
the job is retried later instead of holding a worker slot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from marketplace_jobs.core.errors import ErrorCategory, ErrorSeverity, JobError, NotFoundError

logger = logging.getLogger(__name__)


def _parse_expiry(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass
class CertificateStatus:
    status: str  # active | pending | none
    expires_at: Optional[datetime] = None
    hosts: List[str] = field(default_factory=list)
    zone_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "hosts": list(self.hosts),
            "zone_id": self.zone_id,
        }


class SSLService:
    def __init__(
        self,
        dns,
        *,
        http=None,
        breaker=None,
        max_wait: float = 120.0,
        poll_interval: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.dns = dns
        self.http = http
        self.breaker = breaker
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    async def _cloudflare(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        # Only API calls go through the breaker; a slow certificate is not an outage.
        if self.breaker is None:
            return await fn(*args, **kwargs)
        return await self.breaker.execute(fn, *args, **kwargs)

    async def _zone_id(self, domain: str, zone_id: Optional[str]) -> str:
        if zone_id:
            return zone_id
        zone = await self._cloudflare(self.dns.get_zone, domain)
        if not zone:
            raise NotFoundError("Cloudflare zone", domain)
        return zone["id"]

    async def provision_certificate(
        self,
        domain: str,
        *,
        zone_id: Optional[str] = None,
        ssl_mode: str = "full",
        auto_https: bool = True,
        always_https: bool = True,
    ) -> CertificateStatus:
        zone_id = await self._zone_id(domain, zone_id)

        await self._cloudflare(self.dns.configure_ssl, zone_id, ssl_mode)
        if auto_https:
            await self._cloudflare(self.dns.enable_auto_https, zone_id)
        if always_https:
            await self._cloudflare(self.dns.enable_always_use_https, zone_id)
        proxied = await self._cloudflare(self.dns.enable_proxy, zone_id)
        logger.info("Configured SSL for %s (mode=%s, newly proxied records=%d)", domain, ssl_mode, proxied)

        waited = 0.0
        while True:
            status = await self.get_certificate_status(domain, zone_id=zone_id)
            if status.active:
                logger.info("Certificate for %s is active (expires %s)", domain, status.expires_at)
                return status
            if waited >= self.max_wait:
                break
            await self._sleep(self.poll_interval)
            waited += self.poll_interval

        raise JobError(
            f"Certificate for {domain} is not active yet (status={status.status})",
            category=ErrorCategory.EXTERNAL_API,
            severity=ErrorSeverity.RECOVERABLE,
            context={"domain": domain, "zone_id": zone_id, "waited": waited},
        )

    async def get_certificate_status(self, domain: str, *, zone_id: Optional[str] = None) -> CertificateStatus:
        zone_id = await self._zone_id(domain, zone_id)
        raw = await self._cloudflare(self.dns.get_ssl_status, zone_id)
        expiries = []
        hosts: List[str] = []
        for cert in raw.get("certificates") or []:
            exp = _parse_expiry(cert.get("expires_on"))
            if exp:
                expiries.append(exp)
            for host in cert.get("hosts") or []:
                if host not in hosts:
                    hosts.append(host)
        return CertificateStatus(
            status=raw.get("status", "none"),
            expires_at=max(expiries) if expiries else None,
            hosts=hosts,
            zone_id=zone_id,
        )

    def is_expiring_soon(self, status: CertificateStatus, threshold_days: int = 30) -> bool:
        if not status.active or status.expires_at is None:
            return True
        return status.expires_at - self._clock() < timedelta(days=threshold_days)

    async def is_certificate_expiring_soon(
        self, domain: str, *, zone_id: Optional[str] = None, threshold_days: int = 30
    ) -> bool:
        return self.is_expiring_soon(await self.get_certificate_status(domain, zone_id=zone_id), threshold_days)

    async def renew_certificate(self, domain: str, *, zone_id: Optional[str] = None) -> CertificateStatus:
        """Universal SSL renews on its own; re-enabling it nudges a stalled pack."""
        zone_id = await self._zone_id(domain, zone_id)
        await self._cloudflare(self.dns.enable_universal_ssl, zone_id)
        return await self.get_certificate_status(domain, zone_id=zone_id)

    async def get_certificates_needing_renewal(
        self, domains: List[Dict[str, Any]], *, threshold_days: int = 30
    ) -> List[Dict[str, Any]]:
        """Domain dicts (``domain``, ``cloudflare_zone_id``) whose certificate needs attention."""
        needing = []
        for d in domains:
            try:
                status = await self.get_certificate_status(d["domain"], zone_id=d.get("cloudflare_zone_id"))
            except JobError as e:
                logger.warning("Could not read certificate status for %s: %s", d["domain"], e)
                needing.append({**d, "reason": str(e)})
                continue
            if self.is_expiring_soon(status, threshold_days):
                needing.append({**d, "reason": f"status={status.status}, expires_at={status.expires_at}"})
        return needing

    async def validate_certificate(self, domain: str) -> Dict[str, Any]:
        """Check that HTTPS answers and plain HTTP redirects to HTTPS."""
        if self.http is None:
            raise RuntimeError("SSLService.validate_certificate needs an http client")
        https_status, _ = await self.http.check_url(f"https://{domain}")
        http_status, location = await self.http.check_url(f"http://{domain}")
        https_ok = https_status is not None and https_status < 500
        redirects = http_status in (301, 302, 307, 308) and str(location or "").startswith("https://")
        errors = []
        if not https_ok:
            errors.append(f"HTTPS not reachable (status={https_status})")
        if not redirects:
            errors.append("HTTP does not redirect to HTTPS")
        return {
            "domain": domain,
            "valid": https_ok and redirects,
            "https_status": https_status,
            "redirects_to_https": redirects,
            "errors": errors,
        }
