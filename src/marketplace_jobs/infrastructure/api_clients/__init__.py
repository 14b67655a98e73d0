from .base import APIClient, http_error_for
from .cloudflare_dns import CloudflareDNSClient
from .cloudflare_registrar import CloudflareRegistrarClient
from .namecheap import NamecheapClient
from .registrars import registrar_for

__all__ = [
    "APIClient",
    "CloudflareDNSClient",
    "CloudflareRegistrarClient",
    "NamecheapClient",
    "http_error_for",
    "registrar_for",
]
