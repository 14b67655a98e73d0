from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from marketplace_jobs.domain.types import enum_value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    return uuid.uuid4().hex


@dataclass
class JobEvent:
    """
    Structured record of one step in a job's life.

    One run_id covers one attempt of one job; ``type`` is one of
    job_start / job_result / job_retry / job_dead_letter / job_enqueue.
    """

    run_id: str
    type: str
    job_type: str = ""
    queue: str = ""
    job_id: Optional[str] = None
    stage: str = ""
    attempt: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "type": self.type,
            "job_type": self.job_type,
            "queue": self.queue,
            "job_id": self.job_id,
            "stage": self.stage,
            "attempt": self.attempt,
            "payload": self.payload,
            "ts": self.ts.isoformat(),
        }


def make_event(
    *,
    run_id: str,
    type: str,
    job_type: str = "",
    queue: str = "",
    job_id: Optional[str] = None,
    stage: str = "",
    attempt: int = 0,
    payload: Optional[Dict[str, Any]] = None,
) -> JobEvent:
    return JobEvent(
        run_id=run_id,
        type=type,
        job_type=enum_value(job_type),
        queue=enum_value(queue),
        job_id=job_id,
        stage=stage,
        attempt=int(attempt),
        payload=dict(payload or {}),
    )
