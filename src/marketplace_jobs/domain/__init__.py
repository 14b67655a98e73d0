from .types import (
    ACTIVE_JOB_STATUSES,
    ALL_SITES,
    JOB_TYPE_TO_QUEUE,
    PAYLOAD_MODELS,
    QUEUE_CONFIG,
    DomainStatus,
    JobContext,
    JobOptions,
    JobResult,
    JobStatus,
    JobType,
    QueueName,
    enum_value,
    queue_for,
)

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "ALL_SITES",
    "JOB_TYPE_TO_QUEUE",
    "PAYLOAD_MODELS",
    "QUEUE_CONFIG",
    "DomainStatus",
    "JobContext",
    "JobOptions",
    "JobResult",
    "JobStatus",
    "JobType",
    "QueueName",
    "enum_value",
    "queue_for",
]
