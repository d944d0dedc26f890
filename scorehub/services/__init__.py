"""
Service layer - resilient, cached access to the upstream sports APIs.

Provides:
- KeyPool: API key rotation with quarantine and periodic reset
- ResilientClient: Key-rotating HTTP client with bounded retry
- CacheStore: Cache-aside store with TTLs and offline-first reads
- FetchOrchestrator: Cache-aside fetches combining all of the above
"""

from scorehub.services.errors import (
    ServiceError,
    ConfigurationError,
    AuthorizationError,
    RateLimitError,
    RequestTimeoutError,
    ServiceUnavailableError,
)
from scorehub.services.key_pool import KeyPool, KeyState, SelectionMode
from scorehub.services.retry_policy import RetryAction, RetryDecision, classify
from scorehub.services.client import ResilientClient
from scorehub.services.cache import CacheStore, CacheEntry, CacheStats, ReadSource
from scorehub.services.orchestrator import (
    FetchOrchestrator,
    FetchResult,
    ServiceConfig,
)

__all__ = [
    # Errors
    "ServiceError",
    "ConfigurationError",
    "AuthorizationError",
    "RateLimitError",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    # Key pool
    "KeyPool",
    "KeyState",
    "SelectionMode",
    # Retry
    "RetryAction",
    "RetryDecision",
    "classify",
    "ResilientClient",
    # Cache
    "CacheStore",
    "CacheEntry",
    "CacheStats",
    "ReadSource",
    # Orchestrator
    "FetchOrchestrator",
    "FetchResult",
    "ServiceConfig",
]
