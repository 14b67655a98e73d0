# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src/ to sys.path so `import marketplace_jobs` works without installing.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

# Also add project root so `from tests.fakes import ...` works
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'marketplace_jobs_test.db'}"


@pytest.fixture
def provider(db_url):
    from marketplace_jobs.infrastructure.stores import SessionProvider

    p = SessionProvider(db_url)
    yield p
    p.engine.dispose()


@pytest.fixture
def fake_pool():
    from tests.fakes import FakeArqPool

    return FakeArqPool()


@pytest.fixture
def services(provider, fake_pool):
    """WorkerServices on sqlite + fake Redis; cloud clients are injected per test."""
    from marketplace_jobs.config.settings import Settings
    from marketplace_jobs.core.circuit_breaker import CircuitBreakerRegistry
    from marketplace_jobs.infrastructure.event_log import InMemoryEventLog
    from marketplace_jobs.infrastructure.queue.queues import QueueRegistry
    from marketplace_jobs.infrastructure.queue.services import WorkerServices
    from marketplace_jobs.infrastructure.stores import (
        SqlAlchemyCatalogStore,
        SqlAlchemyDomainStore,
        SqlAlchemyErrorStore,
        SqlAlchemyJobStore,
        SqlAlchemySettingsStore,
    )
    from tests.fakes import FakeDNS, FakeHttp

    settings = Settings.model_validate({"hosting": {"root_target": "sites.example-host.com"}})
    jobs = SqlAlchemyJobStore(provider=provider)
    event_log = InMemoryEventLog()
    svc = WorkerServices(
        settings,
        jobs=jobs,
        domains=SqlAlchemyDomainStore(provider=provider),
        catalog=SqlAlchemyCatalogStore(provider=provider),
        platform=SqlAlchemySettingsStore(provider=provider),
        error_store=SqlAlchemyErrorStore(provider=provider),
        event_log=event_log,
        queues=QueueRegistry(jobs, pool=fake_pool, event_log=event_log),
        breakers=CircuitBreakerRegistry(),
        dns=FakeDNS(),
        http=FakeHttp(),
    )
    return svc
