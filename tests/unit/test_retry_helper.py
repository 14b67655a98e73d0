from __future__ import annotations

import asyncio

import pytest

from marketplace_jobs.core.errors import BusinessLogicError, NetworkError
from marketplace_jobs.core.retry import RetryConfig, with_async_retry


class _Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_retries_retryable_job_errors_then_succeeds():
    sleeps = _Sleeps()
    calls = {"n": 0}

    @with_async_retry(RetryConfig(max_retries=3, initial_delay=0.5, backoff_factor=2.0, max_delay=1.5), sleep=sleeps)
    async def flaky():
        calls["n"] += 1
        if calls["n"] < 4:
            raise NetworkError("blip")
        return "done"

    assert asyncio.run(flaky()) == "done"
    assert calls["n"] == 4
    assert sleeps.delays == [0.5, 1.0, 1.5]


def test_gives_up_after_max_retries():
    sleeps = _Sleeps()

    @with_async_retry(RetryConfig(max_retries=2), sleep=sleeps)
    async def always_down():
        raise NetworkError("down")

    with pytest.raises(NetworkError):
        asyncio.run(always_down())
    assert len(sleeps.delays) == 2


def test_non_retryable_raises_immediately():
    sleeps = _Sleeps()

    @with_async_retry(sleep=sleeps)
    async def bad_request():
        raise BusinessLogicError("invalid")

    with pytest.raises(BusinessLogicError):
        asyncio.run(bad_request())
    assert sleeps.delays == []


def test_extra_exception_types():
    config = RetryConfig(max_retries=1, retry_on_exceptions=(KeyError,))
    assert config.should_retry(KeyError("x")) is True
    assert config.should_retry(ValueError("x")) is False
    assert config.should_retry(NetworkError("x")) is True
