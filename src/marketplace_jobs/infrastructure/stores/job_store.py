from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, desc, func, select

from marketplace_jobs.domain.types import ACTIVE_JOB_STATUSES, JobStatus, enum_value
from marketplace_jobs.infrastructure.stores.base import SqlAlchemyStore
from marketplace_jobs.infrastructure.stores.models import JobModel
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import iso, utcnow


class SqlAlchemyJobStore(SqlAlchemyStore):
    """Job records backing the queue: status, attempts, payload and results."""

    def create_job(
        self,
        *,
        job_type: str,
        queue: str,
        payload: Dict[str, Any],
        site_id: Optional[str] = None,
        dedup_key: str = "",
        status: JobStatus = JobStatus.PENDING,
        priority: int = 5,
        max_attempts: int = 3,
        scheduled_for: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = utcnow()
        with self._provider.session() as session:
            row = JobModel(
                type=enum_value(job_type),
                queue=enum_value(queue),
                status=JobStatus(status).value,
                site_id=site_id,
                dedup_key=dedup_key,
                priority=int(priority),
                max_attempts=int(max_attempts),
                scheduled_for=scheduled_for,
                started_at=started_at,
                created_at=now,
                updated_at=now,
            )
            row.set_payload(payload)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._job_to_dict(row)

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(JobModel, job_id)
            return self._job_to_dict(row) if row else None

    def find_active_duplicate(self, dedup_key: str) -> Optional[Dict[str, Any]]:
        """Oldest non-terminal job sharing ``dedup_key``, if any."""
        if not dedup_key:
            return None
        with self._provider.session() as session:
            row = session.execute(
                select(JobModel)
                .where(JobModel.dedup_key == dedup_key)
                .where(JobModel.status.in_([s.value for s in ACTIVE_JOB_STATUSES]))
                .order_by(JobModel.created_at)
                .limit(1)
            ).scalar_one_or_none()
            return self._job_to_dict(row) if row else None

    def find_by_idempotency_key(self, key: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.execute(
                select(JobModel).where(JobModel.idempotency_key == key).limit(1)
            ).scalar_one_or_none()
            return self._job_to_dict(row) if row else None

    def set_idempotency_key(self, job_id: str, key: str) -> bool:
        with self._provider.session() as session:
            row = session.get(JobModel, job_id)
            if row is None:
                return False
            row.idempotency_key = key
            row.updated_at = utcnow()
            session.commit()
            return True

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        attempts: Optional[int] = None,
        skipped: Optional[bool] = None,
    ) -> bool:
        status = JobStatus(status)
        now = utcnow()
        with self._provider.session() as session:
            row = session.get(JobModel, job_id)
            if row is None:
                return False
            row.status = status.value
            row.updated_at = now
            if status == JobStatus.RUNNING:
                row.started_at = now
            if status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
                row.completed_at = now
            if result is not None:
                row.set_result(result)
            if error is not None:
                row.error = error
            if attempts is not None:
                row.attempts = int(attempts)
            if skipped is not None:
                row.skipped = bool(skipped)
            session.commit()
            return True

    def delete_job(self, job_id: str) -> bool:
        with self._provider.session() as session:
            res = session.execute(delete(JobModel).where(JobModel.id == job_id))
            session.commit()
            return bool(res.rowcount)

    def list_stuck(self, *, status: JobStatus, older_than: datetime, limit: int = 200) -> List[Dict[str, Any]]:
        """
        PENDING jobs created before ``older_than`` or RUNNING jobs started
        before it (falling back to created_at when started_at is missing).
        """
        status = JobStatus(status)
        with self._provider.session() as session:
            stmt = select(JobModel).where(JobModel.status == status.value)
            if status == JobStatus.RUNNING:
                started = func.coalesce(JobModel.started_at, JobModel.created_at)
                stmt = stmt.where(started < older_than)
            else:
                stmt = stmt.where(JobModel.created_at < older_than)
            rows = session.execute(stmt.order_by(JobModel.created_at).limit(int(limit))).scalars().all()
            return [self._job_to_dict(r) for r in rows]

    def count_by_status(self, queue: Optional[str] = None) -> Dict[str, int]:
        with self._provider.session() as session:
            stmt = select(JobModel.status, func.count(JobModel.id)).group_by(JobModel.status)
            if queue:
                stmt = stmt.where(JobModel.queue == enum_value(queue))
            counts = {status.value: 0 for status in JobStatus}
            for status, count in session.execute(stmt).all():
                counts[status] = int(count)
            return counts

    def count_recent(
        self,
        *,
        job_type: str,
        since: datetime,
        statuses: Optional[Iterable[JobStatus]] = None,
        exclude_skipped: bool = False,
    ) -> int:
        with self._provider.session() as session:
            stmt = (
                select(func.count(JobModel.id))
                .where(JobModel.type == enum_value(job_type))
                .where(JobModel.created_at >= since)
            )
            if statuses:
                stmt = stmt.where(JobModel.status.in_([JobStatus(s).value for s in statuses]))
            if exclude_skipped:
                stmt = stmt.where(JobModel.skipped.isnot(True))
            return int(session.execute(stmt).scalar_one() or 0)

    def list_jobs(
        self,
        *,
        status: Optional[JobStatus] = None,
        queue: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            stmt = select(JobModel)
            if status:
                stmt = stmt.where(JobModel.status == JobStatus(status).value)
            if queue:
                stmt = stmt.where(JobModel.queue == enum_value(queue))
            rows = session.execute(stmt.order_by(desc(JobModel.created_at)).limit(int(limit))).scalars().all()
            return [self._job_to_dict(r) for r in rows]

    @staticmethod
    def _job_to_dict(row: JobModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "type": row.type,
            "queue": row.queue,
            "status": row.status,
            "site_id": row.site_id,
            "dedup_key": row.dedup_key,
            "idempotency_key": row.idempotency_key,
            "priority": int(row.priority or 0),
            "attempts": int(row.attempts or 0),
            "max_attempts": int(row.max_attempts or 0),
            "payload": row.get_payload(),
            "result": row.get_result(),
            "error": row.error,
            "skipped": bool(row.skipped),
            "scheduled_for": iso(row.scheduled_for),
            "started_at": iso(row.started_at),
            "completed_at": iso(row.completed_at),
            "created_at": iso(row.created_at),
            "updated_at": iso(row.updated_at),
        }
