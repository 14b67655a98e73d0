"""
Cloudflare zone, DNS record and edge-certificate operations.

All responses use Cloudflare's envelope ``{success, errors, result}``; an
envelope with ``success: false`` is raised as ``ExternalApiError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from marketplace_jobs.core.errors import ConfigurationError, ExternalApiError
from marketplace_jobs.core.retry import CLOUDFLARE_READ_RETRY_CONFIG, with_async_retry
from marketplace_jobs.infrastructure.api_clients.base import APIClient

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
AUTO_TTL = 1


def cloudflare_auth_headers(api_token: str = "", api_key: str = "", email: str = "") -> Dict[str, str]:
    if api_token:
        return {"Authorization": f"Bearer {api_token}"}
    if api_key and email:
        return {"X-Auth-Email": email, "X-Auth-Key": api_key}
    if api_key:
        raise ConfigurationError("CLOUDFLARE_EMAIL is required when authenticating with CLOUDFLARE_API_KEY")
    raise ConfigurationError(
        "Cloudflare credentials are not configured: set CLOUDFLARE_API_TOKEN or CLOUDFLARE_API_KEY and CLOUDFLARE_EMAIL"
    )


def _format_errors(errors: Any) -> str:
    if not errors:
        return "unknown error"
    parts = []
    for err in errors:
        if isinstance(err, dict):
            parts.append(f"{err.get('code', '?')}: {err.get('message', '')}".strip())
        else:
            parts.append(str(err))
    return "; ".join(parts)


def unwrap_envelope(body: Any) -> Any:
    if not isinstance(body, dict):
        raise ExternalApiError("Unexpected Cloudflare response shape", service="cloudflare")
    if not body.get("success", False):
        raise ExternalApiError(
            f"Cloudflare API error: {_format_errors(body.get('errors'))}",
            service="cloudflare",
            context={"errors": body.get("errors") or []},
        )
    return body.get("result")


class CloudflareClient(APIClient):
    """Cloudflare v4 API with envelope handling; shared by DNS and registrar clients."""

    service_name = "cloudflare"

    def __init__(
        self,
        *,
        api_token: str = "",
        api_key: str = "",
        email: str = "",
        account_id: str = "",
        timeout: int = 30,
    ):
        super().__init__(
            CLOUDFLARE_API_BASE,
            headers={"Content-Type": "application/json", **cloudflare_auth_headers(api_token, api_key, email)},
            timeout=timeout,
        )
        self.account_id = account_id

    @classmethod
    def from_settings(cls, config) -> "CloudflareClient":
        return cls(
            api_token=config.api_token,
            api_key=config.api_key,
            email=config.email,
            account_id=config.account_id,
        )

    def _require_account_id(self) -> str:
        if not self.account_id:
            raise ConfigurationError("CLOUDFLARE_ACCOUNT_ID is not configured")
        return self.account_id

    def _error_message(self, body: str) -> str:
        try:
            return _format_errors(json.loads(body).get("errors"))
        except (ValueError, AttributeError):
            return body[:200]

    async def call(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
    ) -> Any:
        body = await self.request(method, endpoint, params=params, json_data=json_data)
        return unwrap_envelope(body)


class CloudflareDNSClient(CloudflareClient):
    # ------------------------------------------------------------------ zones

    async def add_zone(self, domain: str) -> Dict[str, Any]:
        zone = await self.call(
            "POST",
            "/zones",
            json_data={"name": domain, "account": {"id": self._require_account_id()}, "jump_start": True},
        )
        logger.info("Created Cloudflare zone %s for %s (status=%s)", zone.get("id"), domain, zone.get("status"))
        return zone

    @with_async_retry(CLOUDFLARE_READ_RETRY_CONFIG)
    async def get_zone(self, domain: str) -> Optional[Dict[str, Any]]:
        zones = await self.call("GET", "/zones", params={"name": domain})
        return zones[0] if zones else None

    @with_async_retry(CLOUDFLARE_READ_RETRY_CONFIG)
    async def get_zone_by_id(self, zone_id: str) -> Dict[str, Any]:
        return await self.call("GET", f"/zones/{zone_id}")

    async def ensure_zone(self, domain: str) -> Dict[str, Any]:
        zone = await self.get_zone(domain)
        if zone is None:
            zone = await self.add_zone(domain)
        return zone

    async def delete_zone(self, zone_id: str) -> None:
        await self.call("DELETE", f"/zones/{zone_id}")

    # ---------------------------------------------------------------- records

    async def create_dns_record(
        self,
        zone_id: str,
        *,
        type: str,
        name: str,
        content: str,
        ttl: int = AUTO_TTL,
        proxied: bool = False,
        priority: Optional[int] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": type, "name": name, "content": content, "ttl": ttl}
        if type in ("A", "AAAA", "CNAME"):
            data["proxied"] = proxied
        if priority is not None:
            data["priority"] = priority
        return await self.call("POST", f"/zones/{zone_id}/dns_records", json_data=data)

    async def update_dns_record(self, zone_id: str, record_id: str, **changes: Any) -> Dict[str, Any]:
        return await self.call("PATCH", f"/zones/{zone_id}/dns_records/{record_id}", json_data=changes)

    @with_async_retry(CLOUDFLARE_READ_RETRY_CONFIG)
    async def list_dns_records(
        self,
        zone_id: str,
        *,
        type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": 100}
        if type:
            params["type"] = type
        if name:
            params["name"] = name
        return await self.call("GET", f"/zones/{zone_id}/dns_records", params=params) or []

    async def delete_dns_record(self, zone_id: str, record_id: str) -> None:
        await self.call("DELETE", f"/zones/{zone_id}/dns_records/{record_id}")

    async def upsert_dns_record(
        self,
        zone_id: str,
        *,
        type: str,
        name: str,
        content: str,
        ttl: int = AUTO_TTL,
        proxied: bool = False,
    ) -> Dict[str, Any]:
        """
        Point ``name`` at ``content``, replacing any A/AAAA/CNAME record
        already on that name (Cloudflare rejects a CNAME next to them).
        """
        existing = [
            r for r in await self.list_dns_records(zone_id, name=name) if r.get("type") in ("A", "AAAA", "CNAME")
        ]
        for record in existing:
            if record.get("type") == type:
                return await self.update_dns_record(
                    zone_id, record["id"], type=type, name=name, content=content, ttl=ttl, proxied=proxied
                )
        for record in existing:
            await self.delete_dns_record(zone_id, record["id"])
        return await self.create_dns_record(zone_id, type=type, name=name, content=content, ttl=ttl, proxied=proxied)

    async def replace_dns_records(self, zone_id: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Delete every record except NS, then create ``records``."""
        for record in await self.list_dns_records(zone_id):
            if record.get("type") != "NS":
                await self.delete_dns_record(zone_id, record["id"])
        created = []
        for record in records:
            created.append(
                await self.create_dns_record(
                    zone_id,
                    type=record["type"],
                    name=record["name"],
                    content=record["content"],
                    ttl=record.get("ttl", AUTO_TTL),
                    proxied=record.get("proxied", False),
                    priority=record.get("priority"),
                )
            )
        logger.info("Replaced DNS records for zone %s with %d records", zone_id, len(created))
        return created

    async def enable_proxy(self, zone_id: str) -> int:
        """Turn on proxying for every A/CNAME record; returns how many changed."""
        changed = 0
        for record in await self.list_dns_records(zone_id):
            if record.get("type") in ("A", "CNAME") and not record.get("proxied"):
                await self.update_dns_record(zone_id, record["id"], proxied=True)
                changed += 1
        return changed

    async def setup_standard_records(
        self,
        zone_id: str,
        domain: str,
        root_target: str,
        *,
        www_target: Optional[str] = None,
        enable_www: bool = True,
        proxied: bool = True,
    ) -> List[Dict[str, Any]]:
        """Apex and www records pointing at the hosting target."""
        records = []
        # A hostname target needs a CNAME (flattened at the apex); an IP needs an A record.
        root_type = "CNAME" if any(c.isalpha() for c in root_target) else "A"
        records.append(
            await self.upsert_dns_record(zone_id, type=root_type, name=domain, content=root_target, proxied=proxied)
        )
        if enable_www:
            records.append(
                await self.upsert_dns_record(
                    zone_id, type="CNAME", name=f"www.{domain}", content=www_target or domain, proxied=proxied
                )
            )
        return records

    async def add_google_verification_record(self, zone_id: str, domain: str, token: str) -> Dict[str, Any]:
        content = f"google-site-verification={token}"
        for record in await self.list_dns_records(zone_id, type="TXT", name=domain):
            if record.get("content") == content:
                return record
        return await self.create_dns_record(zone_id, type="TXT", name=domain, content=content)

    # ---------------------------------------------------------------- settings

    async def _set_zone_setting(self, zone_id: str, setting: str, value: Any) -> Dict[str, Any]:
        return await self.call("PATCH", f"/zones/{zone_id}/settings/{setting}", json_data={"value": value})

    async def configure_ssl(self, zone_id: str, mode: str = "full") -> Dict[str, Any]:
        if mode not in ("off", "flexible", "full", "strict"):
            raise ConfigurationError(f"Unsupported Cloudflare SSL mode: {mode}")
        return await self._set_zone_setting(zone_id, "ssl", mode)

    async def enable_auto_https(self, zone_id: str) -> Dict[str, Any]:
        return await self._set_zone_setting(zone_id, "automatic_https_rewrites", "on")

    async def enable_always_use_https(self, zone_id: str) -> Dict[str, Any]:
        return await self._set_zone_setting(zone_id, "always_use_https", "on")

    async def enable_universal_ssl(self, zone_id: str) -> Dict[str, Any]:
        return await self.call("PATCH", f"/zones/{zone_id}/ssl/universal/settings", json_data={"enabled": True})

    @with_async_retry(CLOUDFLARE_READ_RETRY_CONFIG)
    async def get_ssl_status(self, zone_id: str) -> Dict[str, Any]:
        """
        Edge certificate state for a zone.

        ``status`` is "active" when any certificate pack is active, "pending"
        while packs are still being issued and "none" without packs.
        """
        packs = await self.call("GET", f"/zones/{zone_id}/ssl/certificate_packs", params={"status": "all"}) or []
        certificates = []
        for pack in packs:
            for cert in pack.get("certificates") or []:
                certificates.append(
                    {
                        "id": cert.get("id"),
                        "hosts": cert.get("hosts") or pack.get("hosts") or [],
                        "status": cert.get("status") or pack.get("status"),
                        "expires_on": cert.get("expires_on"),
                    }
                )
        if any(p.get("status") == "active" for p in packs):
            status = "active"
        elif packs:
            status = "pending"
        else:
            status = "none"
        return {"status": status, "certificates": certificates}
