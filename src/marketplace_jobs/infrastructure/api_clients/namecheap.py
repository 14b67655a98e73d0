"""
Namecheap XML API client.

Every command is a GET against ``xml.response`` with the credential
parameters; a response whose ``ApiResponse/@Status`` is not ``OK`` is raised
as ``ExternalApiError`` carrying the joined error messages.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from marketplace_jobs.application.ports.registrar_port import DomainAvailability, DomainRegistration
from marketplace_jobs.config.settings import NamecheapConfig, RegistrantContact
from marketplace_jobs.core.errors import BusinessLogicError, ConfigurationError, ExternalApiError, JobError
from marketplace_jobs.infrastructure.api_clients.base import APIClient

logger = logging.getLogger(__name__)

NAMECHEAP_API_URL = "https://api.namecheap.com/xml.response"
NAMECHEAP_SANDBOX_URL = "https://api.sandbox.namecheap.com/xml.response"

RENEWAL_PRICING: Dict[str, float] = {
    "com": 13.98,
    "net": 15.98,
    "org": 14.98,
    "io": 39.98,
    "co": 32.98,
}
DEFAULT_RENEWAL_PRICE = 15.0

_CONTACT_ROLES = ("Registrant", "Tech", "Admin", "AuxBilling")
_CONTACT_FIELDS = {
    "FirstName": "first_name",
    "LastName": "last_name",
    "Address1": "address1",
    "City": "city",
    "StateProvince": "state_province",
    "PostalCode": "postal_code",
    "Country": "country",
    "Phone": "phone",
    "EmailAddress": "email_address",
}


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_all(root: ET.Element, name: str) -> List[ET.Element]:
    return [el for el in root.iter() if _local(el.tag) == name]


def _find(root: ET.Element, name: str) -> Optional[ET.Element]:
    found = _find_all(root, name)
    return found[0] if found else None


def _is_true(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() == "true"


def split_domain(domain: str) -> tuple:
    """("example", "co.uk") style split into SLD and TLD."""
    parts = domain.lower().split(".", 1)
    if len(parts) != 2:
        raise BusinessLogicError(f"Invalid domain name: {domain}")
    return parts[0], parts[1]


def parse_api_response(xml_text: str) -> ET.Element:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ExternalApiError(f"Invalid Namecheap XML response: {e}", service="namecheap", original_error=e) from e
    status = root.get("Status", "ERROR")
    if status.upper() != "OK":
        messages = [(el.text or "").strip() for el in _find_all(root, "Error")]
        raise ExternalApiError(
            f"Namecheap API error: {'; '.join(m for m in messages if m) or status}",
            service="namecheap",
            context={"status": status},
        )
    return root


class NamecheapClient(APIClient):
    service_name = "namecheap"
    name = "namecheap"

    def __init__(
        self,
        *,
        api_user: str,
        api_key: str,
        username: str = "",
        client_ip: str = "",
        sandbox: bool = True,
        contact: Optional[RegistrantContact] = None,
        timeout: int = 30,
    ):
        if not api_user or not api_key or not client_ip:
            raise ConfigurationError("Namecheap API credentials are not configured (NAMECHEAP_API_USER/API_KEY/CLIENT_IP)")
        super().__init__(NAMECHEAP_SANDBOX_URL if sandbox else NAMECHEAP_API_URL, timeout=timeout)
        self.api_user = api_user
        self.api_key = api_key
        self.username = username or api_user
        self.client_ip = client_ip
        self.sandbox = sandbox
        self.contact = contact or RegistrantContact()

    @classmethod
    def from_settings(cls, config: NamecheapConfig) -> "NamecheapClient":
        return cls(
            api_user=config.api_user,
            api_key=config.api_key,
            username=config.username,
            client_ip=config.client_ip,
            sandbox=config.sandbox,
            contact=config.contact,
        )

    async def command(self, command: str, **params: Any) -> ET.Element:
        query = {
            "ApiUser": self.api_user,
            "ApiKey": self.api_key,
            "UserName": self.username,
            "ClientIp": self.client_ip,
            "Command": command,
        }
        query.update({k: str(v) for k, v in params.items() if v is not None})
        text = await self.request("GET", self.base_url, params=query, expect_json=False)
        return parse_api_response(text)

    async def check_availability(self, domain: str) -> DomainAvailability:
        results = await self.check_bulk_availability([domain])
        return results[0] if results else DomainAvailability(domain=domain, available=False)

    async def check_bulk_availability(self, domains: Sequence[str]) -> List[DomainAvailability]:
        root = await self.command("namecheap.domains.check", DomainList=",".join(domains))
        out = []
        for el in _find_all(root, "DomainCheckResult"):
            premium = _is_true(el.get("IsPremiumName"))
            price = el.get("PremiumRegistrationPrice") if premium else None
            out.append(
                DomainAvailability(
                    domain=el.get("Domain", ""),
                    available=_is_true(el.get("Available")),
                    price=float(price) if price else None,
                    premium=premium,
                )
            )
        return out

    def _contact_params(self) -> Dict[str, str]:
        missing = [attr for attr in _CONTACT_FIELDS.values() if not getattr(self.contact, attr)]
        if missing:
            raise ConfigurationError(f"Namecheap registrant contact is incomplete: missing {', '.join(missing)}")
        params = {}
        for role in _CONTACT_ROLES:
            for api_field, attr in _CONTACT_FIELDS.items():
                params[f"{role}{api_field}"] = getattr(self.contact, attr)
        return params

    async def register_domain(self, domain: str, *, auto_renew: bool = True, years: int = 1) -> DomainRegistration:
        availability = await self.check_availability(domain)
        if not availability.available:
            raise BusinessLogicError(f"Domain {domain} is not available for registration", context={"domain": domain})

        root = await self.command(
            "namecheap.domains.create",
            DomainName=domain,
            Years=years,
            AddFreeWhoisguard="yes",
            WGEnabled="yes",
            **self._contact_params(),
        )
        result = _find(root, "DomainCreateResult")
        if result is None or not _is_true(result.get("Registered")):
            raise ExternalApiError(f"Namecheap did not register {domain}", service="namecheap")

        now = datetime.now(timezone.utc)
        charged = result.get("ChargedAmount")
        registration = DomainRegistration(
            domain=domain,
            registered_at=now,
            expires_at=now + timedelta(days=365 * years),
            order_id=result.get("OrderID"),
            transaction_id=result.get("TransactionID"),
            charged_amount=float(charged) if charged else None,
            auto_renew=auto_renew,
        )
        if auto_renew:
            # The domain is already paid for; a failed follow-up call must not lose the registration.
            try:
                await self.enable_auto_renew(domain)
            except JobError as e:
                logger.warning("Registered %s but could not enable auto-renew: %s", domain, e)
                registration.auto_renew = False
        logger.info("Registered %s via Namecheap (order %s)", domain, registration.order_id)
        return registration

    async def enable_auto_renew(self, domain: str) -> None:
        """Lock the domain at Namecheap so it stays with the account and renews with it."""
        root = await self.command("namecheap.domains.setRegistrarLock", DomainName=domain, LockAction="LOCK")
        result = _find(root, "DomainSetRegistrarLockResult")
        if result is not None and not _is_true(result.get("IsSuccess")):
            raise ExternalApiError(f"Namecheap did not lock {domain}", service="namecheap", context={"domain": domain})
        logger.info("Auto-renew lock enabled for %s", domain)

    async def get_domain_info(self, domain: str) -> Optional[Dict[str, Any]]:
        root = await self.command("namecheap.domains.getInfo", DomainName=domain)
        result = _find(root, "DomainGetInfoResult")
        if result is None:
            return None
        created = _find(root, "CreatedDate")
        expires = _find(root, "ExpiredDate")
        nameservers = [(el.text or "").strip() for el in _find_all(root, "Nameserver")]
        return {
            "domain": result.get("DomainName", domain),
            "status": result.get("Status"),
            "owner": result.get("OwnerName"),
            "created": created.text if created is not None else None,
            "expires": expires.text if expires is not None else None,
            "nameservers": [ns for ns in nameservers if ns],
        }

    async def set_nameservers(self, domain: str, nameservers: Sequence[str]) -> None:
        sld, tld = split_domain(domain)
        await self.command("namecheap.domains.dns.setCustom", SLD=sld, TLD=tld, Nameservers=",".join(nameservers))
        logger.info("Nameservers for %s set to %s", domain, list(nameservers))

    async def set_dns_records(self, domain: str, records: Sequence[Dict[str, Any]]) -> None:
        """Replace all host records; each record has name, type, address and optional ttl/mx_pref."""
        sld, tld = split_domain(domain)
        params: Dict[str, Any] = {"SLD": sld, "TLD": tld}
        for num, record in enumerate(records, start=1):
            params[f"HostName{num}"] = record.get("name") or "@"
            params[f"RecordType{num}"] = record["type"]
            params[f"Address{num}"] = record["address"]
            params[f"TTL{num}"] = record.get("ttl", 1800)
            if record["type"] == "MX":
                params[f"MXPref{num}"] = record.get("mx_pref", 10)
        await self.command("namecheap.domains.dns.setHosts", **params)

    async def get_renewal_price(self, domain: str) -> float:
        return RENEWAL_PRICING.get(domain.rsplit(".", 1)[-1].lower(), DEFAULT_RENEWAL_PRICE)
