from __future__ import annotations

from marketplace_jobs.application.ports.registrar_port import RegistrarPort
from marketplace_jobs.config.settings import Settings
from marketplace_jobs.core.errors import BusinessLogicError
from marketplace_jobs.infrastructure.api_clients.cloudflare_registrar import CloudflareRegistrarClient
from marketplace_jobs.infrastructure.api_clients.namecheap import NamecheapClient

SUPPORTED_REGISTRARS = ("cloudflare", "namecheap")


def registrar_for(name: str, settings: Settings) -> RegistrarPort:
    """Build the registrar client for ``name``; credentials are checked on construction."""
    if name == "cloudflare":
        return CloudflareRegistrarClient.from_settings(settings.cloudflare)
    if name == "namecheap":
        return NamecheapClient.from_settings(settings.namecheap)
    raise BusinessLogicError(
        f"Registrar '{name}' is not supported; use one of {', '.join(SUPPORTED_REGISTRARS)}",
        context={"registrar": name},
    )
