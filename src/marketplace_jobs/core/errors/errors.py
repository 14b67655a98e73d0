"""
Job error taxonomy and retry policy.

Every failure inside a job handler is normalised into a ``JobError`` so the
worker can decide between an immediate retry, a delayed retry, or moving the
job to the dead letter state.
"""

from __future__ import annotations

import asyncio
import math
import random
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
from sqlalchemy.exc import SQLAlchemyError


class ErrorCategory(str, Enum):
    EXTERNAL_API = "EXTERNAL_API"
    DATABASE = "DATABASE"
    CONFIGURATION = "CONFIGURATION"
    BUSINESS_LOGIC = "BUSINESS_LOGIC"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    AUTH = "AUTH"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, Enum):
    TEMPORARY = "TEMPORARY"      # retry soon
    RECOVERABLE = "RECOVERABLE"  # retry with backoff
    PERMANENT = "PERMANENT"      # retrying will not help
    CRITICAL = "CRITICAL"        # needs an operator


class JobError(Exception):
    """Base error for everything raised from job handlers."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.RECOVERABLE,
        retryable: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.retryable = severity != ErrorSeverity.PERMANENT if retryable is None else retryable
        self.context: Dict[str, Any] = dict(context or {})
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": self.context,
            "original_error": repr(self.original_error) if self.original_error else None,
        }


class ExternalApiError(JobError):
    def __init__(
        self,
        message: str,
        *,
        service: str,
        status_code: Optional[int] = None,
        severity: Optional[ErrorSeverity] = None,
        retryable: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        ctx = {"service": service, "status_code": status_code, **(context or {})}
        if status_code == 429:
            category, default_severity, default_retryable = ErrorCategory.RATE_LIMIT, ErrorSeverity.TEMPORARY, True
        elif status_code is not None and status_code >= 500:
            category, default_severity, default_retryable = ErrorCategory.EXTERNAL_API, ErrorSeverity.RECOVERABLE, True
        elif status_code in (401, 403):
            category, default_severity, default_retryable = ErrorCategory.AUTH, ErrorSeverity.CRITICAL, False
        else:
            category, default_severity, default_retryable = ErrorCategory.EXTERNAL_API, ErrorSeverity.PERMANENT, False
        super().__init__(
            message,
            category=category,
            severity=severity or default_severity,
            retryable=default_retryable if retryable is None else retryable,
            context=ctx,
            original_error=original_error,
        )
        self.service = service
        self.status_code = status_code


class DatabaseError(JobError):
    def __init__(self, message: str, *, context=None, original_error=None):
        super().__init__(
            message,
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.RECOVERABLE,
            retryable=True,
            context=context,
            original_error=original_error,
        )


class ConfigurationError(JobError):
    def __init__(self, message: str, *, context=None, original_error=None):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            context=context,
            original_error=original_error,
        )


class BusinessLogicError(JobError):
    def __init__(self, message: str, *, context=None, original_error=None):
        super().__init__(
            message,
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.PERMANENT,
            context=context,
            original_error=original_error,
        )


class NotFoundError(JobError):
    def __init__(self, resource: str, identifier: str, *, context=None, original_error=None):
        super().__init__(
            f"{resource} not found: {identifier}",
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.PERMANENT,
            context={"resource": resource, "identifier": identifier, **(context or {})},
            original_error=original_error,
        )
        self.resource = resource
        self.identifier = identifier


class RateLimitError(JobError):
    def __init__(
        self,
        service: str,
        *,
        retry_after: Optional[float] = None,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
        reset_at: Optional[str] = None,
        message: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(
            message or f"Rate limit exceeded for {service}",
            category=ErrorCategory.RATE_LIMIT,
            severity=ErrorSeverity.TEMPORARY,
            retryable=True,
            context={
                "service": service,
                "retry_after": retry_after,
                "limit": limit,
                "remaining": remaining,
                "reset_at": reset_at,
            },
            original_error=original_error,
        )
        self.service = service
        self.retry_after = retry_after


class NetworkError(JobError):
    def __init__(self, message: str, *, host: Optional[str] = None, original_error=None):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.RECOVERABLE,
            retryable=True,
            context={"host": host} if host else None,
            original_error=original_error,
        )
        self.host = host


_TRANSPORT_ERRORS = (asyncio.TimeoutError, ConnectionError, aiohttp.ClientError)


def to_job_error(error: Any) -> JobError:
    """Convert anything raised by a handler into a classified ``JobError``."""
    if isinstance(error, JobError):
        return error

    if not isinstance(error, BaseException):
        return JobError(str(error), category=ErrorCategory.UNKNOWN, severity=ErrorSeverity.RECOVERABLE)

    message = str(error) or type(error).__name__
    lowered = message.lower()

    if isinstance(error, SQLAlchemyError):
        return DatabaseError(message, original_error=error)
    if isinstance(error, _TRANSPORT_ERRORS):
        return NetworkError(message, original_error=error)

    if "rate limit" in lowered or "too many requests" in lowered:
        return RateLimitError("Unknown", message=message, original_error=error)
    if any(k in lowered for k in ("network", "econnrefused", "timeout", "dns")):
        return NetworkError(message, original_error=error)
    if "not found" in lowered or "does not exist" in lowered:
        return NotFoundError("Resource", message, original_error=error)
    if "database" in lowered:
        return DatabaseError(message, original_error=error)
    if any(k in lowered for k in ("env", "config", "api key", "api secret")):
        return ConfigurationError(message, original_error=error)

    return JobError(
        message,
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.RECOVERABLE,
        original_error=error,
    )


MAX_RETRY_DELAY = 300.0
RATE_LIMIT_DEFAULT_DELAY = 60.0


def calculate_retry_delay(error: JobError, attempts_made: int, rng: Optional[random.Random] = None) -> float:
    """
    Seconds to wait before the next attempt.

    Exponential backoff from 2s (temporary) or 5s (everything else), capped at
    five minutes, with +/-20% jitter. Rate limits honour ``retry_after``.
    """
    if not error.retryable:
        return 0.0

    if isinstance(error, RateLimitError):
        return float(error.retry_after) if error.retry_after else RATE_LIMIT_DEFAULT_DELAY

    base = 2.0 if error.severity == ErrorSeverity.TEMPORARY else 5.0
    delay = min(base * (2 ** max(attempts_made, 0)), MAX_RETRY_DELAY)
    jitter = delay * (rng or random).uniform(-0.2, 0.2)
    return math.floor((delay + jitter) * 1000) / 1000


def should_move_to_dead_letter(error: JobError, attempts_made: int, max_attempts: int = 5) -> bool:
    if error.severity == ErrorSeverity.CRITICAL or error.category == ErrorCategory.CONFIGURATION:
        return True
    if error.severity == ErrorSeverity.PERMANENT and attempts_made >= 1:
        return True
    return attempts_made >= max_attempts
