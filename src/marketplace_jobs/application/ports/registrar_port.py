from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass
class DomainAvailability:
    domain: str
    available: bool
    price: Optional[float] = None
    currency: str = "USD"
    premium: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "available": self.available,
            "price": self.price,
            "currency": self.currency,
            "premium": self.premium,
        }


@dataclass
class DomainRegistration:
    domain: str
    registered_at: datetime
    expires_at: datetime
    order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    charged_amount: Optional[float] = None
    auto_renew: bool = True
    nameservers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "registered_at": self.registered_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "order_id": self.order_id,
            "transaction_id": self.transaction_id,
            "charged_amount": self.charged_amount,
            "auto_renew": self.auto_renew,
            "nameservers": list(self.nameservers),
        }


@runtime_checkable
class RegistrarPort(Protocol):
    """What domain handlers need from a registrar."""

    name: str

    async def check_availability(self, domain: str) -> DomainAvailability:
        ...

    async def register_domain(self, domain: str, *, auto_renew: bool = True, years: int = 1) -> DomainRegistration:
        ...

    async def get_renewal_price(self, domain: str) -> float:
        ...

    async def close(self) -> None:
        ...
