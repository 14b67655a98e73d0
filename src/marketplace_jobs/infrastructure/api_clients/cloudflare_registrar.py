from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from marketplace_jobs.application.ports.registrar_port import DomainAvailability, DomainRegistration
from marketplace_jobs.core.errors import BusinessLogicError, ExternalApiError
from marketplace_jobs.infrastructure.api_clients.cloudflare_dns import CloudflareClient

logger = logging.getLogger(__name__)

# Cloudflare Registrar sells at wholesale cost; USD per year.
TLD_PRICING: Dict[str, float] = {
    "com": 9.77,
    "net": 10.77,
    "org": 9.77,
    "co": 11.77,
    "io": 33.77,
    "dev": 12.77,
    "app": 14.77,
    "xyz": 9.77,
    "info": 9.77,
    "biz": 12.77,
    "us": 9.77,
    "me": 9.77,
    "tv": 32.77,
    "uk": 9.77,
    "de": 9.77,
    "fr": 9.77,
    "nl": 9.77,
    "eu": 9.77,
    "ca": 12.77,
    "au": 15.77,
}
DEFAULT_TLD_PRICE = 12.0


def tld_of(domain: str) -> str:
    return domain.rsplit(".", 1)[-1].lower()


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class CloudflareRegistrarClient(CloudflareClient):
    name = "cloudflare"

    def get_tld_price(self, domain: str) -> float:
        return TLD_PRICING.get(tld_of(domain), DEFAULT_TLD_PRICE)

    async def check_availability(self, domain: str) -> DomainAvailability:
        results = await self.check_bulk_availability([domain])
        return results[0] if results else DomainAvailability(domain=domain, available=False)

    async def check_bulk_availability(self, domains: List[str]) -> List[DomainAvailability]:
        # Lookup failures propagate; they must never read as "unavailable" or "available".
        result = await self.call(
            "POST",
            f"/accounts/{self._require_account_id()}/registrar/domains/check",
            json_data={"domains": list(domains)},
        )

        by_name = {str(item.get("name", "")).lower(): item for item in (result or [])}
        out = []
        for domain in domains:
            item = by_name.get(domain.lower(), {})
            available = bool(item.get("available")) and bool(item.get("can_register", True))
            out.append(
                DomainAvailability(
                    domain=domain,
                    available=available,
                    price=self.get_tld_price(domain) if available else None,
                    premium=bool(item.get("premium", False)),
                )
            )
        return out

    async def register_domain(self, domain: str, *, auto_renew: bool = True, years: int = 1) -> DomainRegistration:
        account_id = self._require_account_id()
        availability = await self.check_availability(domain)
        if not availability.available:
            raise BusinessLogicError(f"Domain {domain} is not available for registration", context={"domain": domain})

        result = await self.call(
            "POST",
            f"/accounts/{account_id}/registrar/domains",
            json_data={"name": domain, "auto_renew": auto_renew, "locked": True, "privacy": True},
        ) or {}
        now = datetime.now(timezone.utc)
        logger.info("Registered %s via Cloudflare Registrar", domain)
        return DomainRegistration(
            domain=domain,
            registered_at=_parse_dt(result.get("created_at")) or now,
            expires_at=_parse_dt(result.get("expires_at")) or now + timedelta(days=365 * years),
            order_id=result.get("id"),
            charged_amount=self.get_tld_price(domain) * years,
            auto_renew=auto_renew,
            nameservers=list(result.get("name_servers") or []),
        )

    async def get_domain_info(self, domain: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.call("GET", f"/accounts/{self._require_account_id()}/registrar/domains/{domain}")
        except ExternalApiError as e:
            if e.status_code == 404:
                return None
            raise

    async def list_domains(self) -> List[Dict[str, Any]]:
        return await self.call("GET", f"/accounts/{self._require_account_id()}/registrar/domains") or []

    async def update_domain(self, domain: str, **settings: Any) -> Dict[str, Any]:
        return await self.call(
            "PUT",
            f"/accounts/{self._require_account_id()}/registrar/domains/{domain}",
            json_data=settings,
        )

    async def enable_auto_renew(self, domain: str) -> Dict[str, Any]:
        return await self.update_domain(domain, auto_renew=True)

    async def get_renewal_price(self, domain: str) -> float:
        return self.get_tld_price(domain)
