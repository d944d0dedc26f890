"""
FetchOrchestrator - Cache-aside access to the upstream sports APIs.

Combines:
- CacheStore for offline-first reads and TTL-based write-back
- ResilientClient per upstream host for key rotation and bounded retry
- A shared KeyPool injected by the caller
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from scorehub.services.cache import CacheStore
from scorehub.services.client import ResilientClient
from scorehub.services.errors import (
    AuthorizationError,
    RateLimitError,
    ServiceError,
)
from scorehub.services.key_pool import KeyPool
from scorehub.services.retry_policy import AUTH_FAILURE_STATUSES, RATE_LIMIT_STATUS
from scorehub.settings import global_settings

T = TypeVar("T")


@dataclass
class FetchResult(Generic[T]):
    """Result from a cache-aside fetch."""

    data: T
    from_cache: bool = False
    service_id: str | None = None


@dataclass
class ServiceConfig:
    """Configuration for one upstream host."""

    service_id: str
    host: str
    base_url: str | None = None
    timeout: float | None = None


DEFAULT_SERVICES = [
    ServiceConfig("football", "v3.football.api-sports.io"),
    ServiceConfig("basketball", "v1.basketball.api-sports.io"),
    ServiceConfig("hockey", "v1.hockey.api-sports.io"),
    ServiceConfig("formula1", "v1.formula-1.api-sports.io"),
    ServiceConfig("volleyball", "v1.volleyball.api-sports.io"),
    ServiceConfig("rugby", "v1.rugby.api-sports.io"),
]


class FetchOrchestrator:
    """
    Cache-aside fetches through per-host resilient clients.

    Usage:
        orchestrator = FetchOrchestrator(pool, CacheStore(session_factory))

        result = await orchestrator.get_cached_or_fetch(
            "football",
            endpoint="live",
            path="fixtures",
            params={"live": "all"},
        )
    """

    def __init__(
        self,
        key_pool: KeyPool,
        cache: CacheStore,
        services: list[ServiceConfig] | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int | None = None,
        retry_delay_ms: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._key_pool = key_pool
        self._cache = cache
        self._max_retries = max_retries or global_settings.max_retries
        self._retry_delay_ms = (
            retry_delay_ms
            if retry_delay_ms is not None
            else int(global_settings.retry_delay_seconds * 1000)
        )
        self._sleep = sleep

        self._http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(global_settings.request_timeout),
            follow_redirects=True,
        )
        self._owns_http_client = http_client is None

        self._services: dict[str, ServiceConfig] = {}
        self._clients: dict[str, ResilientClient] = {}
        for config in services if services is not None else DEFAULT_SERVICES:
            self.register_service(config)

    def register_service(self, config: ServiceConfig) -> None:
        """Register an upstream host and build its client."""
        self._services[config.service_id] = config
        self._clients[config.service_id] = ResilientClient(
            self._key_pool,
            host=config.host,
            base_url=config.base_url,
            service_id=config.service_id,
            http_client=self._http_client,
            timeout=config.timeout,
            max_retries=self._max_retries,
            retry_delay_ms=self._retry_delay_ms,
            sleep=self._sleep,
        )
        logger.debug(f"Registered service: {config.service_id} ({config.host})")

    def get_client(self, service_id: str) -> ResilientClient:
        client = self._clients.get(service_id)
        if client is None:
            raise ServiceError(f"Unknown service '{service_id}'", service_id=service_id)
        return client

    async def get_cached_or_fetch(
        self,
        service_id: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        response_type: Any = None,
        path: str | None = None,
        force_refresh: bool = False,
        cache_ttl: int | None = None,
    ) -> FetchResult[Any]:
        """
        Return cached data if valid, otherwise fetch, cache and return it.

        Args:
            service_id: Registered service (also the cache domain)
            endpoint: Logical endpoint name, drives the cache key and TTL
            params: Query parameters
            response_type: Type to validate the payload into
            path: Upstream path, defaults to `endpoint`
            force_refresh: Skip the cache read (the result is still cached)
            cache_ttl: Override TTL in milliseconds

        Raises:
            RateLimitError: Every key was rate limited
            AuthorizationError: Every key was rejected
            ServiceError: Other upstream or transport failures
        """
        client = self.get_client(service_id)
        cache_key = self._cache.generate_cache_key(service_id, endpoint, params)

        if not force_refresh:
            cached = await self._cache.get_cached_data_with_fallback(
                cache_key, response_type
            )
            if cached is not None:
                return FetchResult(data=cached, from_cache=True, service_id=service_id)

        response = await client.get(path or endpoint, params=params)
        data = self._parse_response(service_id, response, response_type)

        ttl = cache_ttl if cache_ttl is not None else self._cache.get_cache_duration(
            endpoint
        )
        if not await self._cache.cache_data(cache_key, data, ttl):
            logger.warning(f"Cache save failed for {cache_key}, continuing anyway")

        return FetchResult(data=data, from_cache=False, service_id=service_id)

    def _parse_response(
        self, service_id: str, response: httpx.Response, response_type: Any
    ) -> Any:
        """Turn a final upstream response into data or a service error."""
        status = response.status_code

        if status == RATE_LIMIT_STATUS:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                service_id,
                float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status in AUTH_FAILURE_STATUSES:
            raise AuthorizationError(service_id, status)
        if not response.is_success:
            raise ServiceError(
                f"HTTP {status}: {response.text[:200]}",
                service_id=service_id,
            )

        try:
            payload = response.json()
            if response_type is None:
                return payload
            return TypeAdapter(response_type).validate_python(payload)
        except (ValueError, ValidationError) as e:
            raise ServiceError(
                f"Invalid response payload: {e}", service_id=service_id
            ) from e

    # Health and maintenance

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of the cache and key pool."""
        return {
            "cache": self._cache.get_cache_stats().to_dict(),
            "key_pool": self._key_pool.get_status(),
            "services": sorted(self._services),
        }

    async def clear_cache(self, pattern: str | None = None) -> int:
        """Clear cache entries, optionally matching a pattern."""
        if pattern:
            return await self._cache.invalidate_cache_pattern(pattern)
        return await self._cache.clear_all_cache()

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._owns_http_client:
            await self._http_client.aclose()
        logger.debug("FetchOrchestrator closed")

    async def __aenter__(self) -> "FetchOrchestrator":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
