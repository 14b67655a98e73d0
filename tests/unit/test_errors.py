"""
Job error taxonomy, retry delays and dead-letter rules.
"""

import asyncio
import random

import aiohttp
import pytest
from sqlalchemy.exc import OperationalError

from marketplace_jobs.core.errors import (
    BusinessLogicError,
    ConfigurationError,
    DatabaseError,
    ErrorCategory,
    ErrorSeverity,
    ExternalApiError,
    JobError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    calculate_retry_delay,
    should_move_to_dead_letter,
    to_job_error,
)


class TestErrorClasses:
    def test_default_retryable_follows_severity(self):
        assert JobError("x", severity=ErrorSeverity.RECOVERABLE).retryable is True
        assert JobError("x", severity=ErrorSeverity.PERMANENT).retryable is False

    def test_explicit_retryable_wins(self):
        err = JobError("x", severity=ErrorSeverity.PERMANENT, retryable=True)
        assert err.retryable is True

    def test_to_dict(self):
        err = BusinessLogicError("Domain taken", context={"domain": "a.com"})
        d = err.to_dict()
        assert d["name"] == "BusinessLogicError"
        assert d["category"] == "BUSINESS_LOGIC"
        assert d["severity"] == "PERMANENT"
        assert d["retryable"] is False
        assert d["context"] == {"domain": "a.com"}

    def test_str_is_message(self):
        assert str(NetworkError("connection reset")) == "connection reset"

    def test_not_found_message(self):
        err = NotFoundError("Domain", "d-1")
        assert err.message == "Domain not found: d-1"
        assert err.context["identifier"] == "d-1"

    def test_configuration_is_critical(self):
        err = ConfigurationError("missing token")
        assert err.severity == ErrorSeverity.CRITICAL
        assert err.retryable is False


class TestExternalApiError:
    @pytest.mark.parametrize(
        "status,category,severity,retryable",
        [
            (429, ErrorCategory.RATE_LIMIT, ErrorSeverity.TEMPORARY, True),
            (502, ErrorCategory.EXTERNAL_API, ErrorSeverity.RECOVERABLE, True),
            (401, ErrorCategory.AUTH, ErrorSeverity.CRITICAL, False),
            (403, ErrorCategory.AUTH, ErrorSeverity.CRITICAL, False),
            (400, ErrorCategory.EXTERNAL_API, ErrorSeverity.PERMANENT, False),
            (None, ErrorCategory.EXTERNAL_API, ErrorSeverity.PERMANENT, False),
        ],
    )
    def test_status_mapping(self, status, category, severity, retryable):
        err = ExternalApiError("boom", service="cloudflare", status_code=status)
        assert err.category == category
        assert err.severity == severity
        assert err.retryable is retryable
        assert err.context["service"] == "cloudflare"


class TestToJobError:
    def test_job_error_passes_through(self):
        err = NetworkError("x")
        assert to_job_error(err) is err

    def test_sqlalchemy_error(self):
        err = to_job_error(OperationalError("SELECT 1", {}, Exception("locked")))
        assert isinstance(err, DatabaseError)
        assert err.retryable is True

    def test_transport_errors(self):
        assert isinstance(to_job_error(asyncio.TimeoutError()), NetworkError)
        assert isinstance(to_job_error(ConnectionRefusedError("refused")), NetworkError)
        assert isinstance(to_job_error(aiohttp.ClientConnectionError("reset")), NetworkError)

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Too Many Requests from upstream", RateLimitError),
            ("ECONNREFUSED 10.0.0.1:443", NetworkError),
            ("record does not exist", NotFoundError),
            ("database is locked", DatabaseError),
            ("missing API key", ConfigurationError),
        ],
    )
    def test_message_heuristics(self, message, expected):
        err = to_job_error(RuntimeError(message))
        assert isinstance(err, expected)
        assert err.original_error is not None

    def test_unknown_is_recoverable(self):
        err = to_job_error(ValueError("something odd"))
        assert type(err) is JobError
        assert err.category == ErrorCategory.UNKNOWN
        assert err.retryable is True

    def test_non_exception(self):
        err = to_job_error("plain string")
        assert err.message == "plain string"


class TestRetryDelay:
    def test_not_retryable_is_zero(self):
        assert calculate_retry_delay(BusinessLogicError("no"), 1) == 0.0

    def test_rate_limit_uses_retry_after(self):
        assert calculate_retry_delay(RateLimitError("cloudflare", retry_after=42), 1) == 42.0
        assert calculate_retry_delay(RateLimitError("cloudflare"), 1) == 60.0

    def test_exponential_with_jitter(self):
        rng = random.Random(7)
        err = NetworkError("reset")  # RECOVERABLE -> base 5s
        for attempt in range(4):
            delay = calculate_retry_delay(err, attempt, rng)
            expected = 5.0 * 2 ** attempt
            assert expected * 0.8 - 0.001 <= delay <= expected * 1.2

    def test_temporary_base(self):
        err = JobError("blip", severity=ErrorSeverity.TEMPORARY)
        delay = calculate_retry_delay(err, 0, random.Random(1))
        assert 1.6 - 0.001 <= delay <= 2.4

    def test_capped(self):
        delay = calculate_retry_delay(NetworkError("reset"), 20, random.Random(3))
        assert delay <= 300 * 1.2


class TestDeadLetter:
    def test_critical_goes_immediately(self):
        assert should_move_to_dead_letter(JobError("x", severity=ErrorSeverity.CRITICAL), 0) is True

    def test_configuration_goes_immediately(self):
        err = JobError("x", category=ErrorCategory.CONFIGURATION, severity=ErrorSeverity.RECOVERABLE)
        assert should_move_to_dead_letter(err, 0) is True

    def test_permanent_after_first_attempt(self):
        err = BusinessLogicError("x")
        assert should_move_to_dead_letter(err, 0) is False
        assert should_move_to_dead_letter(err, 1) is True

    def test_recoverable_until_max_attempts(self):
        err = NetworkError("x")
        assert should_move_to_dead_letter(err, 4, 5) is False
        assert should_move_to_dead_letter(err, 5, 5) is True
