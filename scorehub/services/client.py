"""
ResilientClient - Async HTTP client with API key rotation and bounded retry.

Each logical call makes at most `max_retries` attempts. Every attempt takes a
fresh key from the KeyPool, sends a copy of the request template carrying
that key/host header pair, and hands the outcome to the retry policy. Key
health is reported back to the pool after every classified attempt. The
template itself is never modified.
"""

import asyncio
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from scorehub.services.errors import (
    RequestTimeoutError,
    ServiceError,
    ServiceUnavailableError,
)
from scorehub.services.key_pool import KeyPool
from scorehub.services.retry_policy import (
    MAX_RETRIES,
    RETRY_DELAY_MS,
    KeyVerdict,
    RetryDecision,
    classify,
)
from scorehub.settings import global_settings
from scorehub.utils import mask_key


class ResilientClient:
    """
    HTTP client for one upstream host, rotating keys from a shared pool.

    Usage:
        pool = KeyPool()
        pool.initialize(["key-a", "key-b"])

        async with ResilientClient(
            pool,
            host="v3.football.api-sports.io",
            base_url="https://v3.football.api-sports.io",
        ) as client:
            response = await client.get("fixtures", params={"live": "all"})

    Terminal HTTP failures (exhausted 429/401/403, or any other non-2xx status)
    are returned as responses. Transport failures are raised once retries run out.
    """

    def __init__(
        self,
        key_pool: KeyPool,
        host: str,
        base_url: str | None = None,
        service_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        max_retries: int = MAX_RETRIES,
        retry_delay_ms: int = RETRY_DELAY_MS,
        key_header: str | None = None,
        host_header: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._key_pool = key_pool
        self._host = host
        self._base_url = base_url or f"https://{host}"
        self._service_id = service_id or host
        self._timeout = timeout or global_settings.request_timeout
        self._max_retries = max(1, max_retries)
        self._retry_delay_ms = retry_delay_ms
        self._key_header = key_header or global_settings.api_key_header
        self._host_header = host_header or global_settings.api_host_header
        self._sleep = sleep

        # HTTP client (lazy initialization unless shared)
        self._http_client = http_client
        self._owns_http_client = http_client is None

    @property
    def service_id(self) -> str:
        return self._service_id

    @property
    def host(self) -> str:
        return self._host

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET a path relative to the base URL."""
        return await self.request("GET", path, params=params, headers=headers)

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Build a request template and send it with key rotation.

        Args:
            method: HTTP method
            path: Path relative to base URL, or an absolute URL
            params: Query parameters
            headers: Additional headers
            json_data: JSON body for POST/PUT requests

        Returns:
            The final upstream response
        """
        client = await self._get_http_client()
        request = client.build_request(
            method,
            self._build_url(path),
            params=params,
            headers=headers,
            json=json_data,
            timeout=httpx.Timeout(self._timeout),
        )
        return await self.send(request)

    async def send(self, request: httpx.Request) -> httpx.Response:
        """
        Deliver a request, rotating keys across at most `max_retries` attempts.

        Raises:
            RequestTimeoutError: Every attempt ended in a transport failure and
                the last one was a timeout
            ServiceUnavailableError: Every attempt ended in a transport failure
        """
        client = await self._get_http_client()
        # Attempts re-send the template body
        await request.aread()
        response: httpx.Response | None = None

        for attempt in range(1, self._max_retries + 1):
            api_key = self._key_pool.get_next_api_key()
            attempt_request = self._with_credentials(request, api_key)

            try:
                response = await client.send(attempt_request)
            except httpx.TransportError as e:
                decision = classify(
                    e, attempt, self._max_retries, self._retry_delay_ms
                )
                if not decision.should_retry:
                    logger.error(
                        f"Request to {self._host} failed after {attempt} attempts: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise self._wrap_transport_error(e) from e

                logger.warning(
                    f"Network error on attempt {attempt} for {self._host}: "
                    f"{type(e).__name__}: {e}"
                )
                await self._sleep(decision.delay_ms / 1000)
                continue

            decision = classify(
                response.status_code, attempt, self._max_retries, self._retry_delay_ms
            )
            self._report(api_key, decision)

            if not decision.should_retry:
                return response

            logger.warning(
                f"HTTP {response.status_code} on attempt {attempt} for {self._host} "
                f"with key {mask_key(api_key)}, rotating key"
            )
            await response.aclose()
            if decision.delay_ms:
                await self._sleep(decision.delay_ms / 1000)

        # Unreachable: the last attempt is always terminal
        raise ServiceError(
            f"Request to {self._host} failed after {self._max_retries} attempts",
            service_id=self._service_id,
        )

    def _with_credentials(self, template: httpx.Request, api_key: str) -> httpx.Request:
        """Copy of the template carrying this attempt's key/host header pair."""
        headers = httpx.Headers(template.headers)
        headers[self._key_header] = api_key
        headers[self._host_header] = self._host
        return httpx.Request(
            template.method,
            template.url,
            headers=headers,
            content=template.content,
            extensions=dict(template.extensions),
        )

    def _report(self, api_key: str, decision: RetryDecision) -> None:
        """Report an attempt outcome to the key pool."""
        if decision.verdict == KeyVerdict.WORKING:
            self._key_pool.mark_key_as_working(api_key)
        elif decision.verdict == KeyVerdict.FAILED:
            self._key_pool.mark_key_as_failed(api_key)

    def _wrap_transport_error(self, error: httpx.TransportError) -> ServiceError:
        if isinstance(error, httpx.TimeoutException):
            return RequestTimeoutError(self._service_id, self._timeout)
        return ServiceUnavailableError(str(error), service_id=self._service_id)

    def _build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url.rstrip('/')}/{path.lstrip('/')}"

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug(f"ResilientClient for {self._host} closed")

    async def __aenter__(self) -> "ResilientClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
