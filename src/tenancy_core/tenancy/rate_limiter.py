"""In-process token bucket rate limiter, one bucket per tenant and operation."""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import NamedTuple

from tenancy_core.exceptions import RateLimitedError
from tenancy_core.observability.metrics import record_rate_limit_exceeded
from tenancy_core.tenancy.models import RateLimitOperation, TenantConfiguration

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0
SECONDS_PER_DAY = 24.0 * 60.0 * 60.0
INGEST_BURST_DIVISOR = 24.0
WEBSOCKET_REFILL_DIVISOR = 10.0
BATCH_EMBED_CAPACITY_DIVISOR = 2.0
BATCH_EMBED_REFILL_DIVISOR = 120.0


@dataclass
class TokenBucket:
    """Token bucket state. ``capacity`` and ``refill_rate`` never change."""

    tokens: float
    capacity: float
    refill_rate: float
    last_refill: float


class LimitInfo(NamedTuple):
    """Rate limit snapshot suitable for ``X-RateLimit-*`` response headers."""

    remaining: int
    capacity: int
    refill_rate_per_second: float


def bucket_key(tenant_id: str, operation: RateLimitOperation) -> str:
    """Build the composite key identifying a bucket."""
    return f"{tenant_id}:{RateLimitOperation(operation).value}"


def bucket_capacity(operation: RateLimitOperation, config: TenantConfiguration) -> float:
    """Maximum burst of an operation for a configuration."""
    operation = RateLimitOperation(operation)
    if operation in (RateLimitOperation.QUERY, RateLimitOperation.RETRIEVE):
        # Burst up to one minute's worth of queries
        return float(config.queries_per_minute)
    if operation is RateLimitOperation.INGEST:
        # Burst up to one hour's worth of ingestion
        return config.documents_per_day / INGEST_BURST_DIVISOR
    if operation is RateLimitOperation.WEBSOCKET:
        return float(config.max_concurrent_websockets)
    return config.queries_per_minute / BATCH_EMBED_CAPACITY_DIVISOR


def bucket_refill_rate(operation: RateLimitOperation, config: TenantConfiguration) -> float:
    """Tokens per second restored to an operation's bucket."""
    operation = RateLimitOperation(operation)
    if operation in (RateLimitOperation.QUERY, RateLimitOperation.RETRIEVE):
        return config.queries_per_minute / SECONDS_PER_MINUTE
    if operation is RateLimitOperation.INGEST:
        return config.documents_per_day / SECONDS_PER_DAY
    if operation is RateLimitOperation.WEBSOCKET:
        return config.max_concurrent_websockets / WEBSOCKET_REFILL_DIVISOR
    return config.queries_per_minute / BATCH_EMBED_REFILL_DIVISOR


class TenantRateLimiter:
    """
    Per-tenant token bucket rate limiter.

    Every (tenant, operation) pair gets its own bucket, created full on first
    use from the configuration registered for the tenant (or the default
    configuration). Tokens refill continuously at the operation's rate:

    - query/retrieve: capacity = queries_per_minute, refill = qpm / 60
    - ingest: capacity = documents_per_day / 24, refill = docs / 86400
    - websocket: capacity = max_concurrent_websockets, refill = max / 10
    - batch_embed: capacity = qpm / 2, refill = qpm / 120

    ``check_limit`` does not consume; call ``record_usage`` once the operation
    has actually gone ahead so failed work is not charged.

    State is process-local. All bucket reads and writes are serialized by one
    asyncio lock, so concurrent callers cannot both spend the last token.
    """

    def __init__(
        self,
        default_config: TenantConfiguration | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            default_config: Configuration for tenants with none registered.
            clock: Monotonic time source in seconds.
        """
        self.default_config = default_config or TenantConfiguration.default()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._tenant_configs: dict[str, TenantConfiguration] = {}
        self._lock = asyncio.Lock()

    # Configuration

    async def set_configuration(self, tenant_id: str, config: TenantConfiguration) -> None:
        """Register a tenant's configuration and drop its buckets so new limits apply."""
        async with self._lock:
            self._tenant_configs[tenant_id] = config
            self._drop_tenant_buckets(tenant_id)
        logger.info("Updated rate limit configuration for tenant %s", tenant_id)

    async def remove_configuration(self, tenant_id: str) -> None:
        """Forget a tenant's configuration and buckets; defaults apply afterwards."""
        async with self._lock:
            self._tenant_configs.pop(tenant_id, None)
            self._drop_tenant_buckets(tenant_id)

    @property
    def configured_tenant_ids(self) -> list[str]:
        """IDs of tenants with an explicitly registered configuration."""
        return list(self._tenant_configs)

    # Limit checks

    async def check_limit(self, tenant_id: str, operation: RateLimitOperation) -> None:
        """
        Check whether a tenant may perform an operation. Does not consume a token.

        Raises:
            RateLimitedError: If fewer than one token is available. ``retry_after``
                is the number of seconds until one token has refilled.
        """
        async with self._lock:
            bucket = self._get_or_create_bucket(tenant_id, operation)
            self._refill(bucket)
            tokens_available = bucket.tokens
            refill_rate = bucket.refill_rate

        if tokens_available < 1.0:
            needed = 1.0 - tokens_available
            retry_after = needed / refill_rate if refill_rate > 0 else math.inf
            logger.warning(
                "Rate limit exceeded for tenant %s (%s). Retry after: %.2fs",
                tenant_id,
                RateLimitOperation(operation).value,
                retry_after,
            )
            record_rate_limit_exceeded(tenant_id, RateLimitOperation(operation).value)
            raise RateLimitedError(
                RateLimitOperation(operation),
                retry_after=retry_after,
                tenant_id=tenant_id,
            )

    async def record_usage(self, tenant_id: str, operation: RateLimitOperation) -> None:
        """Consume one token. Creates the bucket if needed and never goes below zero."""
        async with self._lock:
            bucket = self._get_or_create_bucket(tenant_id, operation)
            self._refill(bucket)
            bucket.tokens = max(0.0, bucket.tokens - 1.0)

    async def get_remaining_quota(self, tenant_id: str, operation: RateLimitOperation) -> int:
        """Whole tokens currently available (full capacity if the bucket is new)."""
        info = await self.get_limit_info(tenant_id, operation)
        return info.remaining

    async def get_limit_info(self, tenant_id: str, operation: RateLimitOperation) -> LimitInfo:
        """
        Get remaining tokens, capacity and refill rate for response headers.

        Does not create a bucket.
        """
        async with self._lock:
            bucket = self._buckets.get(bucket_key(tenant_id, operation))
            if bucket is not None:
                self._refill(bucket)
                return LimitInfo(
                    remaining=math.floor(bucket.tokens),
                    capacity=math.floor(bucket.capacity),
                    refill_rate_per_second=bucket.refill_rate,
                )

            config = self._config_for(tenant_id)
            capacity = math.floor(bucket_capacity(operation, config))
            return LimitInfo(
                remaining=capacity,
                capacity=capacity,
                refill_rate_per_second=bucket_refill_rate(operation, config),
            )

    # Management

    async def reset_limits(self, tenant_id: str) -> None:
        """Drop all buckets of a tenant, restoring full quota."""
        async with self._lock:
            self._drop_tenant_buckets(tenant_id)
        logger.info("Reset rate limits for tenant %s", tenant_id)

    async def reset_all(self) -> None:
        """Drop every bucket."""
        async with self._lock:
            self._buckets.clear()

    @property
    def active_bucket_count(self) -> int:
        """Number of buckets currently tracked."""
        return len(self._buckets)

    async def get_bucket_snapshot(self) -> dict[str, float]:
        """Current token levels per bucket key, refilled to now. Buckets are not modified."""
        async with self._lock:
            snapshot = {}
            for key, bucket in self._buckets.items():
                copy = replace(bucket)
                self._refill(copy)
                snapshot[key] = copy.tokens
            return snapshot

    # Private helpers (caller holds the lock)

    def _config_for(self, tenant_id: str) -> TenantConfiguration:
        return self._tenant_configs.get(tenant_id, self.default_config)

    def _get_or_create_bucket(self, tenant_id: str, operation: RateLimitOperation) -> TokenBucket:
        key = bucket_key(tenant_id, operation)
        bucket = self._buckets.get(key)
        if bucket is None:
            config = self._config_for(tenant_id)
            capacity = bucket_capacity(operation, config)
            bucket = TokenBucket(
                tokens=capacity,
                capacity=capacity,
                refill_rate=bucket_refill_rate(operation, config),
                last_refill=self._clock(),
            )
            self._buckets[key] = bucket
        return bucket

    def _refill(self, bucket: TokenBucket) -> None:
        now = self._clock()
        elapsed = max(0.0, now - bucket.last_refill)
        bucket.tokens = min(bucket.capacity, bucket.tokens + elapsed * bucket.refill_rate)
        bucket.last_refill = now

    def _drop_tenant_buckets(self, tenant_id: str) -> None:
        # Operation values never contain ":", so the tenant is everything before the last one
        self._buckets = {
            key: bucket
            for key, bucket in self._buckets.items()
            if key.rpartition(":")[0] != tenant_id
        }
