"""
Everything a job handler needs, built once per worker process.

Stores share one SessionProvider. Cloud clients are created on first use so
a worker without Namecheap credentials still runs the jobs that never touch
Namecheap; a missing credential surfaces as a ConfigurationError in the job.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from arq.connections import ArqRedis

from marketplace_jobs.application.ports.event_log_port import EventLogPort
from marketplace_jobs.application.ports.registrar_port import RegistrarPort
from marketplace_jobs.application.services.collection_generator import CollectionGenerator
from marketplace_jobs.application.services.error_tracking import ErrorTrackingService
from marketplace_jobs.application.services.pause_control import SafeguardService
from marketplace_jobs.application.services.ssl_service import SSLService
from marketplace_jobs.application.services.stuck_task_detector import StuckTaskDetector
from marketplace_jobs.config.settings import Settings
from marketplace_jobs.core.circuit_breaker import CLOUDFLARE_BREAKER, CircuitBreakerRegistry, circuit_breakers
from marketplace_jobs.infrastructure.api_clients.base import APIClient
from marketplace_jobs.infrastructure.api_clients.cloudflare_dns import CloudflareDNSClient
from marketplace_jobs.infrastructure.api_clients.registrars import registrar_for
from marketplace_jobs.infrastructure.event_log.sqlalchemy_event_log import SqlAlchemyEventLog
from marketplace_jobs.infrastructure.queue.job_manager import JobManager
from marketplace_jobs.infrastructure.queue.queues import QueueRegistry
from marketplace_jobs.infrastructure.stores import (
    SessionProvider,
    SqlAlchemyCatalogStore,
    SqlAlchemyDomainStore,
    SqlAlchemyErrorStore,
    SqlAlchemyJobStore,
    SqlAlchemySettingsStore,
)

logger = logging.getLogger(__name__)


class WorkerServices:
    def __init__(
        self,
        settings: Settings,
        *,
        jobs: SqlAlchemyJobStore,
        domains: SqlAlchemyDomainStore,
        catalog: SqlAlchemyCatalogStore,
        platform: SqlAlchemySettingsStore,
        error_store: SqlAlchemyErrorStore,
        event_log: EventLogPort,
        queues: QueueRegistry,
        breakers: Optional[CircuitBreakerRegistry] = None,
        dns: Optional[CloudflareDNSClient] = None,
        http: Optional[APIClient] = None,
        registrars: Optional[Dict[str, RegistrarPort]] = None,
    ):
        self.settings = settings
        self.jobs = jobs
        self.domains = domains
        self.catalog = catalog
        self.platform = platform
        self.error_store = error_store
        self.event_log = event_log
        self.queues = queues
        self.job_manager = JobManager(queues)
        self.breakers = breakers or circuit_breakers
        self.http = http or APIClient(timeout=15)
        self._dns = dns
        self._registrars: Dict[str, RegistrarPort] = dict(registrars or {})

        self.safeguards = SafeguardService(platform, domains, jobs)
        self.error_tracking = ErrorTrackingService(error_store)
        self.stuck_detector = StuckTaskDetector(
            jobs,
            queues,
            self.error_tracking,
            pending_minutes=settings.scheduler.stuck_pending_minutes,
            running_minutes=settings.scheduler.stuck_running_minutes,
            max_retries=settings.scheduler.max_stuck_retries,
        )
        self.collections = CollectionGenerator(catalog)
        self._ssl: Optional[SSLService] = None

    @property
    def dns(self) -> CloudflareDNSClient:
        if self._dns is None:
            self._dns = CloudflareDNSClient.from_settings(self.settings.cloudflare)
        return self._dns

    @property
    def ssl(self) -> SSLService:
        if self._ssl is None:
            self._ssl = SSLService(
                self.dns,
                http=self.http,
                breaker=self.breakers.get_breaker(CLOUDFLARE_BREAKER),
                max_wait=self.settings.ssl.max_wait_seconds,
                poll_interval=self.settings.ssl.poll_interval_seconds,
            )
        return self._ssl

    def registrar(self, name: str) -> RegistrarPort:
        if name not in self._registrars:
            self._registrars[name] = registrar_for(name, self.settings)
        return self._registrars[name]

    async def close(self) -> None:
        clients = [self.http, *self._registrars.values()]
        if self._dns is not None:
            clients.append(self._dns)
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning("Error closing %s: %s", type(client).__name__, e)
        await self.queues.close()
        self.jobs.close()


def build_services(
    settings: Settings,
    *,
    pool: Optional[ArqRedis] = None,
    event_log: Optional[EventLogPort] = None,
) -> WorkerServices:
    provider = SessionProvider(settings.database.url)
    jobs = SqlAlchemyJobStore(provider=provider)
    event_log = event_log or SqlAlchemyEventLog(provider=provider)
    return WorkerServices(
        settings,
        jobs=jobs,
        domains=SqlAlchemyDomainStore(provider=provider),
        catalog=SqlAlchemyCatalogStore(provider=provider),
        platform=SqlAlchemySettingsStore(provider=provider),
        error_store=SqlAlchemyErrorStore(provider=provider),
        event_log=event_log,
        queues=QueueRegistry(jobs, redis_settings=settings.redis.to_arq(), pool=pool, event_log=event_log),
    )
