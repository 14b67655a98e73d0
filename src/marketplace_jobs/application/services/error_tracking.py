"""
Persistent record of job failures, with pattern alerts and stats.
"""

from __future__ import annotations

import logging
import traceback
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from marketplace_jobs.core.errors import JobError

logger = logging.getLogger(__name__)


@dataclass
class ErrorLogEntry:
    job_id: Optional[str]
    job_type: str
    error_name: str
    error_message: str
    error_category: str
    error_severity: str
    retryable: bool
    attempts_made: int = 0
    queue: str = ""
    site_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def from_error(
        cls,
        error: JobError,
        *,
        job_id: Optional[str],
        job_type: str,
        queue: str = "",
        site_id: Optional[str] = None,
        attempts_made: int = 0,
    ) -> "ErrorLogEntry":
        source = error.original_error or error
        stack = "".join(traceback.format_exception(type(source), source, source.__traceback__))
        return cls(
            job_id=job_id,
            job_type=job_type,
            queue=queue,
            site_id=site_id,
            error_name=type(error).__name__,
            error_message=error.message,
            error_category=error.category.value,
            error_severity=error.severity.value,
            retryable=error.retryable,
            attempts_made=attempts_made,
            context=error.context,
            stack_trace=stack or None,
        )


@dataclass
class Alert:
    level: str  # warning | critical
    title: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "title": self.title, "message": self.message, "context": self.context}


class ErrorTrackingService:
    def __init__(
        self,
        error_store,
        *,
        alert_sink: Optional[Callable[[Alert], None]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = error_store
        self.alert_sink = alert_sink
        self._clock = clock

    def log_error(self, entry: ErrorLogEntry) -> None:
        """Persist a failure; never raises, a tracking outage must not fail the job twice."""
        log = logger.error if entry.error_severity in ("CRITICAL", "PERMANENT") else logger.warning
        log(
            "Job %s (%s) failed [%s/%s] attempt %d: %s",
            entry.job_id,
            entry.job_type,
            entry.error_category,
            entry.error_severity,
            entry.attempts_made,
            entry.error_message,
        )
        try:
            self.store.add_error(
                job_id=entry.job_id,
                job_type=entry.job_type,
                queue=entry.queue,
                site_id=entry.site_id,
                error_name=entry.error_name,
                error_message=entry.error_message,
                category=entry.error_category,
                severity=entry.error_severity,
                retryable=entry.retryable,
                attempts_made=entry.attempts_made,
                context=entry.context,
                stack_trace=entry.stack_trace,
                created_at=entry.timestamp,
            )
        except Exception as e:
            logger.error("Failed to persist job error for %s: %s", entry.job_id, e)

    def send_alert(self, alert: Alert) -> None:
        log = logger.critical if alert.level == "critical" else logger.warning
        log("ALERT [%s] %s: %s", alert.level, alert.title, alert.message)
        if self.alert_sink is not None:
            try:
                self.alert_sink(alert)
            except Exception as e:
                logger.error("Alert sink failed: %s", e)

    def check_error_patterns(self, *, window: timedelta = timedelta(hours=1), threshold: int = 10) -> List[Alert]:
        since = self._clock() - window
        alerts: List[Alert] = []

        for job_type, count in sorted(self.store.count_by_job_type(since=since).items()):
            if count >= threshold:
                alerts.append(
                    Alert(
                        level="warning",
                        title=f"High failure rate: {job_type}",
                        message=f"{count} failures in the last {int(window.total_seconds() // 60)} minutes",
                        context={"job_type": job_type, "count": count},
                    )
                )

        critical = self.store.list_critical(since=since)
        if critical:
            alerts.append(
                Alert(
                    level="critical",
                    title="Critical job errors",
                    message=f"{len(critical)} critical or configuration errors; latest: {critical[0]['error_message']}",
                    context={"count": len(critical), "job_ids": [c["job_id"] for c in critical[:10]]},
                )
            )

        for alert in alerts:
            self.send_alert(alert)
        return alerts

    def get_error_stats(self, *, window: timedelta = timedelta(hours=24)) -> Dict[str, Any]:
        errors = self.store.list_errors(since=self._clock() - window, limit=10000)
        by_category = Counter(e["category"] for e in errors)
        by_type = Counter(e["job_type"] for e in errors)
        return {
            "total": len(errors),
            "by_category": dict(by_category),
            "by_type": dict(by_type),
            "critical_count": sum(1 for e in errors if e["severity"] == "CRITICAL"),
            "retryable_count": sum(1 for e in errors if e["retryable"]),
            "window_hours": window.total_seconds() / 3600,
        }

    def cleanup_old_errors(self, *, retention_days: int = 30) -> int:
        deleted = self.store.delete_older_than(self._clock() - timedelta(days=retention_days))
        logger.info("Deleted %d job errors older than %d days", deleted, retention_days)
        return deleted
