"""
Async HTTP client shared by the registrar and DNS clients.

Failures are raised as job errors so that the worker's retry policy can act on
them directly: 429 becomes ``RateLimitError``, other HTTP errors become
``ExternalApiError`` and transport problems become ``NetworkError``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
from aiohttp import ClientTimeout

from marketplace_jobs.core.errors import ExternalApiError, JobError, NetworkError, RateLimitError

logger = logging.getLogger(__name__)

USER_AGENT = "MarketplaceJobs/1.0"


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def http_error_for(
    service: str,
    status: int,
    message: str,
    *,
    retry_after: Optional[float] = None,
    context: Optional[Dict[str, Any]] = None,
) -> JobError:
    """Map an HTTP failure status onto the job error taxonomy."""
    if status == 429:
        return RateLimitError(service, retry_after=retry_after, message=f"{service} rate limited: {message}")
    return ExternalApiError(f"{service} API error {status}: {message}", service=service, status_code=status, context=context)


class APIClient:
    """Generic async HTTP API client."""

    service_name = "http"

    def __init__(
        self,
        base_url: str = "",
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = 30,
        request_interval: float = 0.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = ClientTimeout(total=timeout)
        self.request_interval = request_interval
        self._last_request_time = 0.0
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"User-Agent": USER_AGENT, **self.headers}
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=headers)
        return self._session

    async def _wait_for_rate_limit(self) -> None:
        if self.request_interval <= 0:
            return
        now = time.monotonic()
        elapsed = now - self._last_request_time
        if elapsed < self.request_interval:
            await asyncio.sleep(self.request_interval - elapsed)
        self._last_request_time = time.monotonic()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        expect_json: bool = True,
    ) -> Any:
        await self._wait_for_rate_limit()
        url = self._url(endpoint)
        session = await self._get_session()

        try:
            async with session.request(method, url, params=params, json=json_data) as response:
                if response.status >= 400:
                    text = await response.text()
                    logger.error("%s %s %s -> %s: %s", self.service_name, method, url, response.status, text[:200])
                    raise http_error_for(
                        self.service_name,
                        response.status,
                        self._error_message(text),
                        retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                        context={"method": method, "url": url},
                    )
                if expect_json:
                    return await response.json(content_type=None)
                return await response.text()
        except asyncio.TimeoutError as e:
            logger.error("Request timeout: %s %s", method, url)
            raise NetworkError(f"{self.service_name} request timed out: {url}", host=urlparse(url).hostname, original_error=e) from e
        except aiohttp.ClientError as e:
            logger.error("Request failed: %s %s - %s", method, url, e)
            raise NetworkError(f"{self.service_name} request failed: {e}", host=urlparse(url).hostname, original_error=e) from e

    def _error_message(self, body: str) -> str:
        """Hook for clients whose error bodies carry structured messages."""
        return body[:200]

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, json_data: Optional[Any] = None) -> Any:
        return await self.request("POST", endpoint, json_data=json_data)

    async def put(self, endpoint: str, json_data: Optional[Any] = None) -> Any:
        return await self.request("PUT", endpoint, json_data=json_data)

    async def patch(self, endpoint: str, json_data: Optional[Any] = None) -> Any:
        return await self.request("PATCH", endpoint, json_data=json_data)

    async def delete(self, endpoint: str) -> Any:
        return await self.request("DELETE", endpoint)

    async def check_url(self, url: str, *, method: str = "HEAD") -> Tuple[Optional[int], Optional[str]]:
        """
        Fetch ``url`` without following redirects.

        Returns (status, Location header); (None, None) when unreachable.
        """
        session = await self._get_session()
        try:
            async with session.request(method, url, allow_redirects=False) as response:
                return response.status, response.headers.get("Location")
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.info("URL check failed for %s: %s", url, e)
            return None, None

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
