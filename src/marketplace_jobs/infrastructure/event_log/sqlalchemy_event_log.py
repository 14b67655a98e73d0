from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import asc, desc, select

from marketplace_jobs.application.events import JobEvent
from marketplace_jobs.application.ports.event_log_port import EventLogPort
from marketplace_jobs.infrastructure.stores.base import SqlAlchemyStore
from marketplace_jobs.infrastructure.stores.models import JobEventModel
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import iso, utcnow

logger = logging.getLogger(__name__)


def _parse_ts(ts: Any) -> datetime:
    if isinstance(ts, datetime):
        return ts
    if isinstance(ts, str):
        try:
            return datetime.fromisoformat(ts)
        except ValueError:
            pass
    return utcnow()


class SqlAlchemyEventLog(SqlAlchemyStore, EventLogPort):
    """
    Persist job lifecycle events via SQLAlchemy.

    - append(): insert one event row
    - stream(run_id): yield events of one attempt ordered by ts
    - list_job_events(job_id): history of a job across attempts
    """

    def append(self, event: Union[JobEvent, dict]) -> None:
        evt: Dict[str, Any] = event.to_dict() if isinstance(event, JobEvent) else dict(event)

        run_id = str(evt.get("run_id") or "")
        if not run_id:
            raise ValueError("Event missing run_id")

        with self._provider.session() as session:
            row = JobEventModel(
                run_id=run_id,
                job_id=evt.get("job_id"),
                job_type=str(evt.get("job_type") or ""),
                queue=str(evt.get("queue") or ""),
                stage=str(evt.get("stage") or ""),
                attempt=int(evt.get("attempt") or 0),
                type=str(evt.get("type") or ""),
                ts=_parse_ts(evt.get("ts")),
            )
            row.set_payload(evt.get("payload") or {})
            session.add(row)
            session.commit()

    def stream(self, run_id: str) -> Iterable[dict]:
        with self._provider.session() as session:
            rows = session.execute(
                select(JobEventModel)
                .where(JobEventModel.run_id == run_id)
                .order_by(asc(JobEventModel.ts), asc(JobEventModel.id))
            ).scalars().all()
        for row in rows:
            yield self._event_to_dict(row)

    def list_job_events(self, job_id: str, *, limit: int = 200) -> List[dict]:
        with self._provider.session() as session:
            rows = session.execute(
                select(JobEventModel)
                .where(JobEventModel.job_id == job_id)
                .order_by(asc(JobEventModel.ts), asc(JobEventModel.id))
                .limit(int(limit))
            ).scalars().all()
            return [self._event_to_dict(r) for r in rows]

    def list_recent(self, *, event_type: Optional[str] = None, limit: int = 50) -> List[dict]:
        with self._provider.session() as session:
            stmt = select(JobEventModel)
            if event_type:
                stmt = stmt.where(JobEventModel.type == event_type)
            rows = session.execute(stmt.order_by(desc(JobEventModel.ts)).limit(int(limit))).scalars().all()
            return [self._event_to_dict(r) for r in rows]

    @staticmethod
    def _event_to_dict(row: JobEventModel) -> dict:
        return {
            "run_id": row.run_id,
            "job_id": row.job_id,
            "job_type": row.job_type,
            "queue": row.queue,
            "stage": row.stage,
            "attempt": row.attempt,
            "type": row.type,
            "payload": row.get_payload(),
            "ts": iso(row.ts),
        }
