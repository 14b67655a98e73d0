from .catalog_store import SqlAlchemyCatalogStore
from .domain_store import SqlAlchemyDomainStore
from .error_store import SqlAlchemyErrorStore
from .job_store import SqlAlchemyJobStore
from .settings_store import SqlAlchemySettingsStore
from .sqlalchemy_db import SessionProvider, get_db_url

__all__ = [
    "SessionProvider",
    "SqlAlchemyCatalogStore",
    "SqlAlchemyDomainStore",
    "SqlAlchemyErrorStore",
    "SqlAlchemyJobStore",
    "SqlAlchemySettingsStore",
    "get_db_url",
]
