from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select

from marketplace_jobs.domain.types import DomainStatus
from marketplace_jobs.infrastructure.stores.base import SqlAlchemyStore
from marketplace_jobs.infrastructure.stores.models import DomainModel, SiteModel
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import as_utc, iso, utcnow

_UPDATABLE_DOMAIN_FIELDS = {
    "status",
    "registrar_order_id",
    "registered_at",
    "expires_at",
    "auto_renew",
    "registration_cost",
    "renewal_cost",
    "verified_at",
    "verification_method",
    "cloudflare_zone_id",
    "dns_configured",
    "ssl_enabled",
    "ssl_expires_at",
    "error_message",
}


class SqlAlchemyDomainStore(SqlAlchemyStore):
    """Tenant sites and their custom domains."""

    # ---------------------------------------------------------------- sites

    def create_site(self, *, name: str, slug: str = "", primary_domain: Optional[str] = None) -> Dict[str, Any]:
        with self._provider.session() as session:
            row = SiteModel(name=name, slug=slug or name.lower().replace(" ", "-"), primary_domain=primary_domain)
            row.created_at = utcnow()
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._site_to_dict(row)

    def get_site(self, site_id: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(SiteModel, site_id)
            return self._site_to_dict(row) if row else None

    def set_site_paused(self, site_id: str, paused: bool, *, reason: Optional[str] = None) -> bool:
        with self._provider.session() as session:
            row = session.get(SiteModel, site_id)
            if row is None:
                return False
            row.autonomous_processes_paused = bool(paused)
            row.pause_reason = reason if paused else None
            session.commit()
            return True

    def set_primary_domain_if_empty(self, site_id: str, domain: str) -> bool:
        with self._provider.session() as session:
            row = session.get(SiteModel, site_id)
            if row is None or row.primary_domain:
                return False
            row.primary_domain = domain
            session.commit()
            return True

    # ---------------------------------------------------------------- domains

    def create_domain(self, *, domain: str, site_id: Optional[str], registrar: str, **fields: Any) -> Dict[str, Any]:
        now = utcnow()
        with self._provider.session() as session:
            row = DomainModel(
                domain=domain.lower(),
                site_id=site_id,
                registrar=registrar,
                status=DomainStatus(fields.pop("status", DomainStatus.PENDING)).value,
                created_at=now,
                updated_at=now,
            )
            self._apply_fields(row, fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._domain_to_dict(row)

    def get_domain(self, domain_id: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(DomainModel, domain_id)
            return self._domain_to_dict(row) if row else None

    def get_domain_by_name(self, domain: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.execute(
                select(DomainModel).where(DomainModel.domain == domain.lower())
            ).scalar_one_or_none()
            return self._domain_to_dict(row) if row else None

    def update_domain(self, domain_id: str, **fields: Any) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(DomainModel, domain_id)
            if row is None:
                return None
            self._apply_fields(row, fields)
            row.updated_at = utcnow()
            session.commit()
            session.refresh(row)
            return self._domain_to_dict(row)

    def list_active_ssl_domains(self, limit: int = 500) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            rows = session.execute(
                select(DomainModel)
                .where(DomainModel.status == DomainStatus.ACTIVE.value)
                .where(DomainModel.ssl_enabled.is_(True))
                .order_by(DomainModel.ssl_expires_at)
                .limit(int(limit))
            ).scalars().all()
            return [self._domain_to_dict(r) for r in rows]

    @staticmethod
    def _apply_fields(row: DomainModel, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - _UPDATABLE_DOMAIN_FIELDS
        if unknown:
            raise ValueError(f"Unknown domain fields: {sorted(unknown)}")
        for key, value in fields.items():
            if key == "status" and value is not None:
                value = DomainStatus(value).value
            setattr(row, key, value)

    @staticmethod
    def _site_to_dict(row: SiteModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "name": row.name,
            "slug": row.slug,
            "primary_domain": row.primary_domain,
            "autonomous_processes_paused": bool(row.autonomous_processes_paused),
            "pause_reason": row.pause_reason,
            "created_at": iso(row.created_at),
        }

    @staticmethod
    def _domain_to_dict(row: DomainModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "domain": row.domain,
            "site_id": row.site_id,
            "status": row.status,
            "registrar": row.registrar,
            "registrar_order_id": row.registrar_order_id,
            "registered_at": as_utc(row.registered_at),
            "expires_at": as_utc(row.expires_at),
            "auto_renew": bool(row.auto_renew),
            "registration_cost": row.registration_cost,
            "renewal_cost": row.renewal_cost,
            "verified_at": as_utc(row.verified_at),
            "verification_method": row.verification_method,
            "cloudflare_zone_id": row.cloudflare_zone_id,
            "dns_configured": bool(row.dns_configured),
            "ssl_enabled": bool(row.ssl_enabled),
            "ssl_expires_at": as_utc(row.ssl_expires_at),
            "error_message": row.error_message,
        }
