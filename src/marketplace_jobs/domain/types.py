"""
Job catalogue: job types, queues, statuses and validated payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_value(value: Any) -> str:
    """Plain string for an enum member or a raw string."""
    return value.value if isinstance(value, Enum) else str(value)


class JobType(str, Enum):
    DOMAIN_REGISTER = "DOMAIN_REGISTER"
    DOMAIN_VERIFY = "DOMAIN_VERIFY"
    SSL_PROVISION = "SSL_PROVISION"
    SSL_RENEWAL_CHECK = "SSL_RENEWAL_CHECK"
    COLLECTION_GENERATE = "COLLECTION_GENERATE"
    COLLECTION_REFRESH = "COLLECTION_REFRESH"
    STUCK_TASK_DETECT = "STUCK_TASK_DETECT"
    ERROR_PATTERN_CHECK = "ERROR_PATTERN_CHECK"
    ERROR_CLEANUP = "ERROR_CLEANUP"
    REDIS_QUEUE_CLEANUP = "REDIS_QUEUE_CLEANUP"

    @property
    def function_name(self) -> str:
        """Name the arq worker registers the job function under."""
        return self.value.lower()


class QueueName(str, Enum):
    DOMAIN = "domain"
    MICROSITE = "microsite"
    SITE = "site"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    RETRYING = "RETRYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_JOB_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.PENDING, JobStatus.SCHEDULED, JobStatus.RUNNING, JobStatus.RETRYING}
)


class DomainStatus(str, Enum):
    PENDING = "PENDING"
    REGISTERING = "REGISTERING"
    DNS_PENDING = "DNS_PENDING"
    SSL_PENDING = "SSL_PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class QueueConfig:
    timeout: int        # seconds a single attempt may run
    attempts: int       # default max attempts for jobs on this queue
    backoff_delay: int  # seconds, fallback delay between attempts


QUEUE_CONFIG: Dict[QueueName, QueueConfig] = {
    QueueName.DOMAIN: QueueConfig(timeout=180, attempts=5, backoff_delay=30),
    QueueName.MICROSITE: QueueConfig(timeout=300, attempts=3, backoff_delay=15),
    QueueName.SITE: QueueConfig(timeout=600, attempts=3, backoff_delay=10),
}

# Hard ceiling for per-job attempts; arq's max_tries is set to this.
MAX_JOB_ATTEMPTS = 10

JOB_TYPE_TO_QUEUE: Dict[JobType, QueueName] = {
    JobType.DOMAIN_REGISTER: QueueName.DOMAIN,
    JobType.DOMAIN_VERIFY: QueueName.DOMAIN,
    JobType.SSL_PROVISION: QueueName.DOMAIN,
    JobType.COLLECTION_GENERATE: QueueName.MICROSITE,
    JobType.SSL_RENEWAL_CHECK: QueueName.SITE,
    JobType.COLLECTION_REFRESH: QueueName.SITE,
    JobType.STUCK_TASK_DETECT: QueueName.SITE,
    JobType.ERROR_PATTERN_CHECK: QueueName.SITE,
    JobType.ERROR_CLEANUP: QueueName.SITE,
    JobType.REDIS_QUEUE_CLEANUP: QueueName.SITE,
}

# Jobs that may be enqueued without a site_id.
SITE_OPTIONAL_JOB_TYPES: FrozenSet[JobType] = frozenset(
    {
        JobType.DOMAIN_VERIFY,
        JobType.SSL_PROVISION,
        JobType.SSL_RENEWAL_CHECK,
        JobType.COLLECTION_GENERATE,
        JobType.COLLECTION_REFRESH,
        JobType.STUCK_TASK_DETECT,
        JobType.ERROR_PATTERN_CHECK,
        JobType.ERROR_CLEANUP,
        JobType.REDIS_QUEUE_CLEANUP,
    }
)

# Stored as NULL; addresses platform-wide jobs.
ALL_SITES = "all"


def queue_for(job_type: JobType) -> QueueName:
    try:
        return JOB_TYPE_TO_QUEUE[JobType(job_type)]
    except (KeyError, ValueError):
        raise ValueError(f"No queue configured for job type: {job_type}") from None


# --------------------------------------------------------------------------- payloads


class JobPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    site_id: Optional[str] = None


class DomainRegisterPayload(JobPayload):
    site_id: str
    domain: str
    registrar: Literal["cloudflare", "namecheap", "google"] = "cloudflare"
    auto_renew: bool = True

    @field_validator("domain")
    @classmethod
    def _normalise_domain(cls, v: str) -> str:
        v = v.strip().lower().rstrip(".")
        if "." not in v or " " in v:
            raise ValueError(f"invalid domain name: {v!r}")
        return v


class DomainVerifyPayload(JobPayload):
    domain_id: str
    verification_method: Literal["dns", "http"] = "dns"


class SslProvisionPayload(JobPayload):
    domain_id: str
    provider: Literal["cloudflare", "letsencrypt"] = "cloudflare"


class SslRenewalCheckPayload(JobPayload):
    threshold_days: int = 30


CollectionKind = Literal["AUDIENCE", "SEASONAL", "THEMATIC", "CURATED"]


class CollectionGeneratePayload(JobPayload):
    microsite_id: str
    collection_types: List[CollectionKind] = Field(
        default_factory=lambda: ["AUDIENCE", "SEASONAL", "THEMATIC", "CURATED"]
    )
    min_products_per_collection: int = 3
    force_regenerate: bool = False


class CollectionRefreshPayload(JobPayload):
    percent_per_run: float = 5
    max_per_run: int = 100
    force_regenerate: bool = False


class StuckTaskDetectPayload(JobPayload):
    pass


class ErrorPatternCheckPayload(JobPayload):
    window_minutes: int = 60
    threshold: int = 10


class ErrorCleanupPayload(JobPayload):
    retention_days: int = 30


class QueueCleanupPayload(JobPayload):
    completed_max_age: int = 3600
    failed_max_age: int = 86400


PAYLOAD_MODELS: Dict[JobType, type] = {
    JobType.DOMAIN_REGISTER: DomainRegisterPayload,
    JobType.DOMAIN_VERIFY: DomainVerifyPayload,
    JobType.SSL_PROVISION: SslProvisionPayload,
    JobType.SSL_RENEWAL_CHECK: SslRenewalCheckPayload,
    JobType.COLLECTION_GENERATE: CollectionGeneratePayload,
    JobType.COLLECTION_REFRESH: CollectionRefreshPayload,
    JobType.STUCK_TASK_DETECT: StuckTaskDetectPayload,
    JobType.ERROR_PATTERN_CHECK: ErrorPatternCheckPayload,
    JobType.ERROR_CLEANUP: ErrorCleanupPayload,
    JobType.REDIS_QUEUE_CLEANUP: QueueCleanupPayload,
}


class JobOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    priority: int = Field(default=5, ge=1, le=10)
    delay: float = Field(default=0, ge=0)  # seconds
    attempts: Optional[int] = Field(default=None, ge=1, le=MAX_JOB_ATTEMPTS)


# --------------------------------------------------------------------------- results


@dataclass
class JobResult:
    success: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_category: Optional[str] = None
    error_severity: Optional[str] = None
    retryable: Optional[bool] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error is not None:
            d["error"] = self.error
            d["error_category"] = self.error_category
            d["error_severity"] = self.error_severity
            d["retryable"] = self.retryable
        return d


PAUSED_CATEGORY = "paused"


def paused_result(reason: Optional[str]) -> JobResult:
    """Result for a job skipped by a safeguard; it is not retried."""
    return JobResult(
        success=False,
        message=f"Skipped: {reason or 'autonomous processing paused'}",
        error=reason or "autonomous processing paused",
        error_category=PAUSED_CATEGORY,
        retryable=False,
    )


@dataclass
class JobContext:
    """What a handler knows about the attempt it is running in."""

    job_type: JobType
    queue: QueueName
    db_job_id: Optional[str] = None
    arq_job_id: str = ""
    attempt: int = 1
    max_attempts: int = 3
    site_id: Optional[str] = None
