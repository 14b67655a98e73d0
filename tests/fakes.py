"""In-memory stand-ins for Redis/arq and the cloud APIs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from marketplace_jobs.application.ports.registrar_port import DomainAvailability, DomainRegistration


@dataclass
class FakeArqJob:
    job_id: str


@dataclass
class FakeJobResult:
    job_id: str
    success: bool
    finish_time: datetime


class FakeArqPool:
    def __init__(self, *, refuse: bool = False, error: Optional[Exception] = None):
        self.refuse = refuse
        self.error = error
        self.enqueued: List[Dict[str, Any]] = []
        self.queues: Dict[str, List[str]] = {}
        self.deleted: List[str] = []
        self.results: List[FakeJobResult] = []
        self.used_memory = 2048
        self.closed = False
        self.flags: Dict[str, str] = {}

    async def enqueue_job(self, function: str, *args: Any, _queue_name: str = "arq:queue", _defer_by=None, **kwargs: Any):
        if self.error is not None:
            raise self.error
        if self.refuse:
            return None
        job_id = uuid.uuid4().hex
        self.enqueued.append(
            {"function": function, "args": args, "queue": _queue_name, "defer_by": _defer_by, "job_id": job_id}
        )
        self.queues.setdefault(_queue_name, []).append(job_id)
        return FakeArqJob(job_id)

    async def zrem(self, key: str, member: str) -> int:
        members = self.queues.get(key, [])
        if member in members:
            members.remove(member)
            return 1
        return 0

    async def zcard(self, key: str) -> int:
        return len(self.queues.get(key, []))

    async def zrange(self, key: str, start: int, end: int) -> List[bytes]:
        members = self.queues.get(key, [])
        members = members[start:] if end == -1 else members[start:end + 1]
        return [m.encode() for m in members]

    async def set(self, key: str, value: str) -> bool:
        self.flags[key] = value
        return True

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self.flags)

    async def delete(self, *keys: str) -> int:
        self.deleted.extend(keys)
        for key in keys:
            self.flags.pop(key, None)
            self.queues.pop(key, None)
        self.results = [r for r in self.results if f"arq:result:{r.job_id}" not in keys]
        return len(keys)

    async def info(self, section: str = "default") -> Dict[str, Any]:
        used = self.used_memory
        self.used_memory = max(0, self.used_memory - 512)
        return {"used_memory": used}

    async def all_job_results(self) -> List[FakeJobResult]:
        return list(self.results)

    async def close(self) -> None:
        self.closed = True


class FakeDNS:
    """Cloudflare DNS client double; records every call by name."""

    def __init__(self, *, zone_status: str = "active", ssl_status: str = "active", expires_in_days: int = 90):
        self.zone_status = zone_status
        self.ssl_status = ssl_status
        self.expires_in_days = expires_in_days
        self.calls: List[Tuple[str, tuple]] = []
        self.records: List[Dict[str, Any]] = []

    def _zone(self, domain: str) -> Dict[str, Any]:
        return {
            "id": f"zone-{domain}",
            "name": domain,
            "status": self.zone_status,
            "name_servers": ["ada.ns.cloudflare.com", "bob.ns.cloudflare.com"],
        }

    async def ensure_zone(self, domain: str) -> Dict[str, Any]:
        self.calls.append(("ensure_zone", (domain,)))
        return self._zone(domain)

    async def get_zone(self, domain: str) -> Optional[Dict[str, Any]]:
        return self._zone(domain)

    async def setup_standard_records(self, zone_id, domain, root_target, *, www_target=None, enable_www=True, proxied=True):
        self.calls.append(("setup_standard_records", (zone_id, domain, root_target)))
        created = [{"id": f"rec-{domain}", "type": "CNAME", "name": domain, "content": root_target}]
        if enable_www:
            created.append({"id": f"rec-www-{domain}", "type": "CNAME", "name": f"www.{domain}", "content": www_target or domain})
        self.records.extend(created)
        return created

    async def configure_ssl(self, zone_id: str, mode: str = "full") -> Dict[str, Any]:
        self.calls.append(("configure_ssl", (zone_id, mode)))
        return {"value": mode}

    async def enable_auto_https(self, zone_id: str) -> Dict[str, Any]:
        self.calls.append(("enable_auto_https", (zone_id,)))
        return {"value": "on"}

    async def enable_always_use_https(self, zone_id: str) -> Dict[str, Any]:
        self.calls.append(("enable_always_use_https", (zone_id,)))
        return {"value": "on"}

    async def enable_universal_ssl(self, zone_id: str) -> Dict[str, Any]:
        self.calls.append(("enable_universal_ssl", (zone_id,)))
        return {"enabled": True}

    async def enable_proxy(self, zone_id: str) -> int:
        self.calls.append(("enable_proxy", (zone_id,)))
        return 0

    async def get_ssl_status(self, zone_id: str) -> Dict[str, Any]:
        self.calls.append(("get_ssl_status", (zone_id,)))
        if self.ssl_status == "none":
            return {"status": "none", "certificates": []}
        expires = datetime.now(timezone.utc) + timedelta(days=self.expires_in_days)
        return {
            "status": self.ssl_status,
            "certificates": [
                {"id": "cert-1", "hosts": ["example.com", "*.example.com"], "status": self.ssl_status,
                 "expires_on": expires.isoformat().replace("+00:00", "Z")},
            ],
        }

    async def close(self) -> None:
        return None


class FakeHttp:
    def __init__(self, responses: Optional[Dict[str, Tuple[Optional[int], Optional[str]]]] = None):
        self.responses = dict(responses or {})
        self.checked_urls: List[str] = []

    async def check_url(self, url: str, *, method: str = "HEAD"):
        self.checked_urls.append(url)
        return self.responses.get(url, (200, None))

    async def close(self) -> None:
        return None


class FakeRegistrar:
    def __init__(self, name: str = "cloudflare", *, available: bool = True, price: float = 9.77):
        self.name = name
        self.available = available
        self.price = price
        self.registered: List[str] = []
        self.nameservers: Dict[str, List[str]] = {}

    async def check_availability(self, domain: str) -> DomainAvailability:
        return DomainAvailability(domain=domain, available=self.available, price=self.price)

    async def register_domain(self, domain: str, *, auto_renew: bool = True, years: int = 1) -> DomainRegistration:
        self.registered.append(domain)
        now = datetime.now(timezone.utc)
        return DomainRegistration(
            domain=domain,
            registered_at=now,
            expires_at=now + timedelta(days=365 * years),
            order_id="order-1",
            charged_amount=self.price,
            auto_renew=auto_renew,
        )

    async def get_renewal_price(self, domain: str) -> float:
        return 10.11

    async def set_nameservers(self, domain: str, nameservers) -> None:
        self.nameservers[domain] = list(nameservers)

    async def close(self) -> None:
        return None
