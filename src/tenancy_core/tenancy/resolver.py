"""Tenant resolution from API keys and JWT bearer tokens."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from tenancy_core.config import Settings, get_settings
from tenancy_core.exceptions import (
    InvalidApiKeyError,
    InvalidTokenError,
    TenancyError,
    TenantNotFoundError,
    UnauthorizedError,
)
from tenancy_core.observability.metrics import (
    record_cache_eviction,
    record_cache_lookup,
    record_tenant_resolution,
)
from tenancy_core.tenancy import tokens
from tenancy_core.tenancy.models import TenantContext
from tenancy_core.tenancy.storage import TenantStorage

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
API_KEY_PREFIX = "ApiKey "


@dataclass
class CachedTenant:
    """A resolved tenant cached under the credential that produced it."""

    context: TenantContext
    expires_at: float
    last_accessed: float


class TenantResolver:
    """
    Resolves tenants from authentication credentials.

    Supported ``Authorization`` header formats:
    - ``Bearer <jwt>``: token carrying a ``tenant_id`` claim
    - ``ApiKey <key>``: API key
    - ``<key>``: anything else is treated as a raw API key

    Resolved contexts are cached by the raw credential (not by tenant, since a
    tenant may hold several live credentials) with a TTL. When the cache grows
    past ``max_cache_size`` the least recently used tenth is swept out.

    All cache access goes through one asyncio lock. Registry lookups run
    outside the lock and the cache is only written once a lookup succeeds, so
    a failed or cancelled resolution leaves no partial entry behind.
    """

    def __init__(
        self,
        storage: TenantStorage,
        jwt_secret: str | None = None,
        cache_ttl: float = 300.0,
        max_cache_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            storage: Tenant registry used on cache misses.
            jwt_secret: HS256 secret. If None, token signatures are not checked.
            cache_ttl: Seconds a resolved credential stays cached.
            max_cache_size: Cache size that triggers an LRU sweep.
            clock: Monotonic time source for cache bookkeeping.
            wall_clock: Unix time source for token expiry checks.
        """
        if cache_ttl <= 0:
            raise ValueError("cache_ttl must be positive")
        if max_cache_size < 1:
            raise ValueError("max_cache_size must be at least 1")

        self.storage = storage
        self._jwt_secret = jwt_secret
        self.cache_ttl = cache_ttl
        self.max_cache_size = max_cache_size
        self._clock = clock
        self._wall_clock = wall_clock
        self._cache: dict[str, CachedTenant] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        storage: TenantStorage,
        settings: Settings | None = None,
    ) -> "TenantResolver":
        """Build a resolver configured from application settings."""
        settings = settings or get_settings()
        return cls(
            storage,
            jwt_secret=settings.jwt_secret,
            cache_ttl=settings.tenant_cache_ttl_seconds,
            max_cache_size=settings.tenant_cache_max_size,
        )

    async def resolve(self, auth_header: str | None) -> TenantContext:
        """
        Resolve a tenant from an ``Authorization`` header value.

        Raises:
            UnauthorizedError: If no header was supplied.
            InvalidApiKeyError: If an API key is unknown.
            InvalidTokenError: If a bearer token is malformed or badly signed.
            TokenExpiredError: If a bearer token has expired.
            TenantNotFoundError: If a token names an unknown tenant.
        """
        if auth_header is None:
            raise UnauthorizedError("Missing authorization header")

        if auth_header.startswith(BEARER_PREFIX):
            return await self.resolve_bearer_token(auth_header[len(BEARER_PREFIX):])
        if auth_header.startswith(API_KEY_PREFIX):
            return await self.resolve_api_key(auth_header[len(API_KEY_PREFIX):])
        return await self.resolve_api_key(auth_header)

    async def resolve_api_key(self, api_key: str) -> TenantContext:
        """
        Resolve a tenant from an API key.

        Raises:
            InvalidApiKeyError: If the registry does not know the key.
        """
        cached = await self._cache_get(api_key)
        if cached is not None:
            record_tenant_resolution("api_key", "success")
            return cached

        context = await self.storage.find_by_api_key(api_key)
        if context is None:
            record_tenant_resolution("api_key", InvalidApiKeyError.error_code)
            raise InvalidApiKeyError()

        await self._cache_put(api_key, context)
        record_tenant_resolution("api_key", "success")
        return context

    async def resolve_bearer_token(self, token: str) -> TenantContext:
        """
        Resolve a tenant from a compact JWT.

        Raises:
            InvalidTokenError: Malformed token, bad signature or missing claim.
            TokenExpiredError: If the ``exp`` claim is in the past.
            TenantNotFoundError: If the ``tenant_id`` claim names no tenant.
        """
        try:
            header, payload, signature = tokens.split_token(token)

            cached = await self._cache_get(token)
            if cached is not None:
                record_tenant_resolution("jwt", "success")
                return cached

            claims = tokens.decode_claims(token)
            tokens.check_expiry(claims, now=self._wall_clock())

            if self._jwt_secret is not None and not tokens.verify_signature(
                header, payload, signature, self._jwt_secret
            ):
                logger.warning("Rejected bearer token with invalid signature")
                raise InvalidTokenError("Invalid signature")

            if claims.tenant_id is None:
                raise InvalidTokenError("Missing tenant_id claim")

            context = await self.storage.find(claims.tenant_id)
            if context is None:
                raise TenantNotFoundError(claims.tenant_id)
        except TenancyError as e:
            record_tenant_resolution("jwt", e.error_code)
            raise

        await self._cache_put(token, context)
        record_tenant_resolution("jwt", "success")
        return context

    # Cache management

    async def invalidate(self, tenant_id: str) -> int:
        """
        Drop every cached credential belonging to a tenant.

        Call this after a tenant's configuration changes.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            before = len(self._cache)
            self._cache = {
                key: entry
                for key, entry in self._cache.items()
                if entry.context.tenant_id != tenant_id
            }
            removed = before - len(self._cache)
        logger.info("Invalidated %d cached credential(s) for tenant %s", removed, tenant_id)
        return removed

    async def clear(self) -> None:
        """Empty the cache."""
        async with self._lock:
            self._cache.clear()

    async def prune_expired(self) -> int:
        """
        Remove expired entries. Safe to call periodically.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            before = len(self._cache)
            self._cache = {
                key: entry for key, entry in self._cache.items() if entry.expires_at > now
            }
            return before - len(self._cache)

    @property
    def cache_count(self) -> int:
        """Number of cached credentials, including expired ones not yet pruned."""
        return len(self._cache)

    # Private helpers

    async def _cache_get(self, credential: str) -> TenantContext | None:
        async with self._lock:
            entry = self._cache.get(credential)
            now = self._clock()
            if entry is None or entry.expires_at <= now:
                record_cache_lookup(hit=False)
                return None
            entry.last_accessed = now
            record_cache_lookup(hit=True)
            return entry.context

    async def _cache_put(self, credential: str, context: TenantContext) -> None:
        async with self._lock:
            now = self._clock()
            self._cache[credential] = CachedTenant(
                context=context,
                expires_at=now + self.cache_ttl,
                last_accessed=now,
            )
            self._evict_if_needed()

    def _evict_if_needed(self) -> None:
        """Sweep out the least recently used tenth once the size limit is exceeded."""
        if len(self._cache) <= self.max_cache_size:
            return

        sweep = max(1, self.max_cache_size // 10)
        oldest = sorted(self._cache.items(), key=lambda item: item[1].last_accessed)[:sweep]
        for credential, _ in oldest:
            del self._cache[credential]

        record_cache_eviction(len(oldest))
        logger.debug("Evicted %d credential cache entries", len(oldest))
