from .errors import (
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

__all__ = [
    "BusinessLogicError",
    "ConfigurationError",
    "DatabaseError",
    "ErrorCategory",
    "ErrorSeverity",
    "ExternalApiError",
    "JobError",
    "NetworkError",
    "NotFoundError",
    "RateLimitError",
    "calculate_retry_delay",
    "should_move_to_dead_letter",
    "to_job_error",
]
