from __future__ import annotations

from typing import Optional

from marketplace_jobs.infrastructure.stores.models import Base
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import SessionProvider


class SqlAlchemyStore:
    """Common constructor for stores; several stores may share one provider."""

    def __init__(
        self,
        db_url: Optional[str] = None,
        *,
        auto_create_schema: bool = True,
        provider: Optional[SessionProvider] = None,
    ):
        self._provider = provider or SessionProvider(db_url)
        self.db_url = self._provider.db_url
        if auto_create_schema:
            # Safety net for local dev and tests; deployments own their schema.
            Base.metadata.create_all(self._provider.engine)

    @property
    def provider(self) -> SessionProvider:
        return self._provider

    def close(self) -> None:
        try:
            self._provider.engine.dispose()
        except Exception:
            pass
