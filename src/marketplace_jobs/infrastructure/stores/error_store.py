from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, desc, func, or_, select

from marketplace_jobs.infrastructure.stores.base import SqlAlchemyStore
from marketplace_jobs.infrastructure.stores.models import JobErrorModel
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import iso, utcnow


class SqlAlchemyErrorStore(SqlAlchemyStore):
    """Classified job failures, kept for pattern detection and stats."""

    def add_error(
        self,
        *,
        job_id: Optional[str],
        job_type: str,
        queue: str = "",
        site_id: Optional[str] = None,
        error_name: str,
        error_message: str,
        category: str,
        severity: str,
        retryable: bool,
        attempts_made: int = 0,
        context: Optional[Dict[str, Any]] = None,
        stack_trace: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        with self._provider.session() as session:
            row = JobErrorModel(
                job_id=job_id,
                job_type=job_type,
                queue=queue,
                site_id=site_id,
                error_name=error_name,
                error_message=error_message,
                category=category,
                severity=severity,
                retryable=bool(retryable),
                attempts_made=int(attempts_made),
                stack_trace=stack_trace,
                created_at=created_at or utcnow(),
            )
            row.set_context(context or {})
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id)

    def list_errors(self, *, since: datetime, limit: int = 1000) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            rows = session.execute(
                select(JobErrorModel)
                .where(JobErrorModel.created_at >= since)
                .order_by(desc(JobErrorModel.created_at))
                .limit(int(limit))
            ).scalars().all()
            return [self._error_to_dict(r) for r in rows]

    def count_by_job_type(self, *, since: datetime) -> Dict[str, int]:
        with self._provider.session() as session:
            rows = session.execute(
                select(JobErrorModel.job_type, func.count(JobErrorModel.id))
                .where(JobErrorModel.created_at >= since)
                .group_by(JobErrorModel.job_type)
            ).all()
            return {job_type: int(count) for job_type, count in rows}

    def list_critical(self, *, since: datetime, limit: int = 50) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            rows = session.execute(
                select(JobErrorModel)
                .where(JobErrorModel.created_at >= since)
                .where(or_(JobErrorModel.severity == "CRITICAL", JobErrorModel.category == "CONFIGURATION"))
                .order_by(desc(JobErrorModel.created_at))
                .limit(int(limit))
            ).scalars().all()
            return [self._error_to_dict(r) for r in rows]

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._provider.session() as session:
            res = session.execute(delete(JobErrorModel).where(JobErrorModel.created_at < cutoff))
            session.commit()
            return int(res.rowcount or 0)

    @staticmethod
    def _error_to_dict(row: JobErrorModel) -> Dict[str, Any]:
        return {
            "id": int(row.id),
            "job_id": row.job_id,
            "job_type": row.job_type,
            "queue": row.queue,
            "site_id": row.site_id,
            "error_name": row.error_name,
            "error_message": row.error_message,
            "category": row.category,
            "severity": row.severity,
            "retryable": bool(row.retryable),
            "attempts_made": int(row.attempts_made or 0),
            "context": row.get_context(),
            "created_at": iso(row.created_at),
        }
