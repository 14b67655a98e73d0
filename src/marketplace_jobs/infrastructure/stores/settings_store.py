from __future__ import annotations

from typing import Any, Dict

from marketplace_jobs.infrastructure.stores.base import SqlAlchemyStore
from marketplace_jobs.infrastructure.stores.models import PlatformSettingsModel
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import iso, utcnow

PLATFORM_ROW_ID = "platform"


class SqlAlchemySettingsStore(SqlAlchemyStore):
    """Platform-wide safeguards (single row, created on first read)."""

    def get_platform_settings(self) -> Dict[str, Any]:
        with self._provider.session() as session:
            row = session.get(PlatformSettingsModel, PLATFORM_ROW_ID)
            if row is None:
                row = PlatformSettingsModel(id=PLATFORM_ROW_ID, updated_at=utcnow())
                session.add(row)
                session.commit()
                session.refresh(row)
            return self._settings_to_dict(row)

    def update_platform_settings(self, **fields: Any) -> Dict[str, Any]:
        with self._provider.session() as session:
            row = session.get(PlatformSettingsModel, PLATFORM_ROW_ID)
            if row is None:
                row = PlatformSettingsModel(id=PLATFORM_ROW_ID)
                session.add(row)
            for key, value in fields.items():
                if key == "id" or not hasattr(PlatformSettingsModel, key):
                    raise ValueError(f"Unknown platform setting: {key}")
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.commit()
            session.refresh(row)
            return self._settings_to_dict(row)

    @staticmethod
    def _settings_to_dict(row: PlatformSettingsModel) -> Dict[str, Any]:
        return {
            "all_autonomous_processes_paused": bool(row.all_autonomous_processes_paused),
            "pause_reason": row.pause_reason,
            "enable_domain_registration": row.enable_domain_registration is not False,
            "enable_ssl_provisioning": row.enable_ssl_provisioning is not False,
            "enable_collection_generation": row.enable_collection_generation is not False,
            "max_domain_registrations_per_day": int(row.max_domain_registrations_per_day or 0),
            "max_collection_jobs_per_hour": int(row.max_collection_jobs_per_hour or 0),
            "updated_at": iso(row.updated_at),
        }
