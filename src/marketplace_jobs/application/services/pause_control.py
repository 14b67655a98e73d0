"""
Safeguards that gate autonomous operations.

Checked before a handler does anything with side effects: the platform-wide
pause switch, the per-site pause flag, per-feature kill switches and simple
rate limits. Every check fails open. A broken settings read is logged, and the
job proceeds rather than silently stalling the whole pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from marketplace_jobs.domain.types import JobStatus, JobType

logger = logging.getLogger(__name__)


class Feature(str, Enum):
    DOMAIN_REGISTRATION = "enable_domain_registration"
    SSL_PROVISIONING = "enable_ssl_provisioning"
    COLLECTION_GENERATION = "enable_collection_generation"


class RateLimitKind(str, Enum):
    DOMAIN_REGISTER = "DOMAIN_REGISTER"
    COLLECTION_GENERATE = "COLLECTION_GENERATE"


# kind -> (job type counted, platform setting holding the limit, window)
_RATE_LIMITS = {
    RateLimitKind.DOMAIN_REGISTER: (JobType.DOMAIN_REGISTER, "max_domain_registrations_per_day", timedelta(days=1)),
    RateLimitKind.COLLECTION_GENERATE: (JobType.COLLECTION_GENERATE, "max_collection_jobs_per_hour", timedelta(hours=1)),
}


@dataclass
class SafeguardDecision:
    allowed: bool
    reason: Optional[str] = None


ALLOWED = SafeguardDecision(True)


class SafeguardService:
    def __init__(
        self,
        settings_store,
        domain_store,
        job_store,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings_store = settings_store
        self.domain_store = domain_store
        self.job_store = job_store
        self._clock = clock

    def is_processing_allowed(self, site_id: Optional[str] = None) -> SafeguardDecision:
        try:
            platform = self.settings_store.get_platform_settings()
            if platform.get("all_autonomous_processes_paused"):
                reason = platform.get("pause_reason") or "all autonomous processes are paused"
                return SafeguardDecision(False, f"Platform paused: {reason}")

            if site_id:
                site = self.domain_store.get_site(site_id)
                if site and site.get("autonomous_processes_paused"):
                    reason = site.get("pause_reason") or "autonomous processes paused for site"
                    return SafeguardDecision(False, f"Site {site_id} paused: {reason}")
        except Exception as e:
            logger.error("Pause check failed, allowing processing: %s", e)
        return ALLOWED

    def is_feature_enabled(self, feature: Feature) -> bool:
        try:
            platform = self.settings_store.get_platform_settings()
            return platform.get(Feature(feature).value, True) is not False
        except Exception as e:
            logger.error("Feature flag check failed for %s, treating as enabled: %s", feature, e)
            return True

    def check_rate_limit(self, kind: RateLimitKind) -> SafeguardDecision:
        job_type, setting, window = _RATE_LIMITS[RateLimitKind(kind)]
        try:
            limit = int(self.settings_store.get_platform_settings().get(setting) or 0)
            if limit <= 0:
                return ALLOWED
            done = self.job_store.count_recent(
                job_type=job_type.value,
                since=self._clock() - window,
                statuses=[JobStatus.COMPLETED],
                exclude_skipped=True,
            )
        except Exception as e:
            logger.error("Rate limit check failed for %s, allowing: %s", kind, e)
            return ALLOWED
        if done >= limit:
            return SafeguardDecision(False, f"Rate limit reached for {job_type.value}: {done}/{limit}")
        return ALLOWED

    def can_execute_autonomous_operation(
        self,
        site_id: Optional[str] = None,
        feature: Optional[Feature] = None,
        rate_limit: Optional[RateLimitKind] = None,
    ) -> SafeguardDecision:
        decision = self.is_processing_allowed(site_id)
        if not decision.allowed:
            return decision
        if feature is not None and not self.is_feature_enabled(feature):
            return SafeguardDecision(False, f"Feature disabled: {Feature(feature).name}")
        if rate_limit is not None:
            return self.check_rate_limit(rate_limit)
        return ALLOWED
