"""Unit tests for TenantResolver."""

from unittest.mock import AsyncMock

import pytest
from jwt.utils import base64url_encode

from tenancy_core.config import Settings
from tenancy_core.exceptions import (
    InvalidApiKeyError,
    InvalidTokenError,
    TenantNotFoundError,
    TokenExpiredError,
    UnauthorizedError,
)
from tenancy_core.tenancy.models import TenantContext
from tenancy_core.tenancy.resolver import TenantResolver
from tenancy_core.tenancy.storage import InMemoryTenantStorage
from tenancy_core.tenancy.tokens import encode_token


class TestResolverConstruction:
    """Tests for resolver construction."""

    def test_rejects_non_positive_ttl(self):
        """Test cache_ttl must be positive."""
        with pytest.raises(ValueError):
            TenantResolver(InMemoryTenantStorage(), cache_ttl=0)

    def test_rejects_zero_cache_size(self):
        """Test max_cache_size must be at least one."""
        with pytest.raises(ValueError):
            TenantResolver(InMemoryTenantStorage(), max_cache_size=0)

    def test_from_settings(self):
        """Test the factory applies settings."""
        settings = Settings(
            jwt_secret="s",
            tenant_cache_ttl_seconds=30,
            tenant_cache_max_size=50,
        )
        resolver = TenantResolver.from_settings(InMemoryTenantStorage(), settings)

        assert resolver.cache_ttl == 30
        assert resolver.max_cache_size == 50


class TestApiKeyResolution:
    """Tests for API key credentials."""

    @pytest.fixture
    def resolver(self, tenant_storage, clock):
        return TenantResolver(tenant_storage, clock=clock)

    @pytest.mark.asyncio
    async def test_missing_header(self, resolver):
        """Test a missing header is unauthorized."""
        with pytest.raises(UnauthorizedError):
            await resolver.resolve(None)

    @pytest.mark.asyncio
    async def test_api_key_prefix(self, resolver):
        """Test the 'ApiKey ' form resolves."""
        tenant = await resolver.resolve("ApiKey key-a")
        assert tenant.tenant_id == "tenant-a"

    @pytest.mark.asyncio
    async def test_raw_api_key(self, resolver):
        """Test a bare header value is treated as an API key."""
        tenant = await resolver.resolve("key-b")
        assert tenant.tenant_id == "tenant-b"

    @pytest.mark.asyncio
    async def test_unknown_api_key(self, resolver):
        """Test unknown keys raise InvalidApiKeyError and are not cached."""
        with pytest.raises(InvalidApiKeyError):
            await resolver.resolve("ApiKey nope")
        assert resolver.cache_count == 0

    @pytest.mark.asyncio
    async def test_second_lookup_served_from_cache(self, tenant_a, clock):
        """Test a cached key does not hit the registry again."""
        storage = AsyncMock()
        storage.find_by_api_key.return_value = tenant_a
        resolver = TenantResolver(storage, clock=clock)

        first = await resolver.resolve_api_key("key-a")
        second = await resolver.resolve_api_key("key-a")

        assert first == second == tenant_a
        storage.find_by_api_key.assert_awaited_once_with("key-a")

    @pytest.mark.asyncio
    async def test_registry_errors_propagate(self, clock):
        """Test registry exceptions are not wrapped and leave no cache entry."""
        storage = AsyncMock()
        storage.find_by_api_key.side_effect = ConnectionError("db down")
        resolver = TenantResolver(storage, clock=clock)

        with pytest.raises(ConnectionError):
            await resolver.resolve("ApiKey key-a")
        assert resolver.cache_count == 0


class TestCacheTtl:
    """Tests for cache expiry."""

    @pytest.mark.asyncio
    async def test_hit_before_ttl_miss_after(self, tenant_a, clock):
        """Test an entry is served at +299s and re-fetched at +301s."""
        storage = AsyncMock()
        storage.find_by_api_key.return_value = tenant_a
        resolver = TenantResolver(storage, cache_ttl=300, clock=clock)

        await resolver.resolve_api_key("key-a")
        clock.advance(299)
        await resolver.resolve_api_key("key-a")
        assert storage.find_by_api_key.await_count == 1

        clock.advance(2)
        await resolver.resolve_api_key("key-a")
        assert storage.find_by_api_key.await_count == 2

    @pytest.mark.asyncio
    async def test_access_does_not_extend_ttl(self, tenant_a, clock):
        """Test hits refresh recency but not expiry."""
        storage = AsyncMock()
        storage.find_by_api_key.return_value = tenant_a
        resolver = TenantResolver(storage, cache_ttl=10, clock=clock)

        await resolver.resolve_api_key("key-a")
        clock.advance(9)
        await resolver.resolve_api_key("key-a")
        clock.advance(2)
        await resolver.resolve_api_key("key-a")

        assert storage.find_by_api_key.await_count == 2

    @pytest.mark.asyncio
    async def test_prune_expired(self, tenant_storage, clock):
        """Test prune_expired drops only expired entries."""
        resolver = TenantResolver(tenant_storage, cache_ttl=10, clock=clock)
        await resolver.resolve("key-a")
        clock.advance(5)
        await resolver.resolve("key-b")
        clock.advance(6)

        assert await resolver.prune_expired() == 1
        assert resolver.cache_count == 1


class TestCacheEviction:
    """Tests for the LRU sweep."""

    @pytest.mark.asyncio
    async def test_sweep_keeps_size_bounded(self, clock):
        """Test inserting past max_cache_size keeps the cache bounded to the newest entries."""
        storage = AsyncMock()
        storage.find_by_api_key.side_effect = lambda key: TenantContext(tenant_id=key)
        resolver = TenantResolver(storage, max_cache_size=100, clock=clock)

        for i in range(150):
            clock.advance(0.001)
            await resolver.resolve_api_key(f"key-{i}")

        assert resolver.cache_count <= 100
        # The fifty least recently accessed credentials are the ones swept out
        assert all(f"key-{i}" not in resolver._cache for i in range(50))
        assert all(f"key-{i}" in resolver._cache for i in range(50, 150))

    @pytest.mark.asyncio
    async def test_sweep_removes_least_recently_used(self, clock):
        """Test the sweep evicts the oldest-accessed entries first."""
        storage = AsyncMock()
        storage.find_by_api_key.side_effect = lambda key: TenantContext(tenant_id=key)
        resolver = TenantResolver(storage, max_cache_size=10, clock=clock)

        for i in range(10):
            clock.advance(1)
            await resolver.resolve_api_key(f"key-{i}")

        # Touch key-0 so key-1 becomes the least recently used
        clock.advance(1)
        await resolver.resolve_api_key("key-0")
        clock.advance(1)
        await resolver.resolve_api_key("key-new")

        assert resolver.cache_count == 10
        assert "key-0" in resolver._cache
        assert "key-1" not in resolver._cache
        assert "key-new" in resolver._cache


class TestCacheInvalidation:
    """Tests for invalidate and clear."""

    @pytest.mark.asyncio
    async def test_invalidate_drops_all_tenant_credentials(self, tenant_storage, clock):
        """Test every credential of the tenant is removed."""
        await tenant_storage.add_api_key("tenant-a", "key-a2")
        resolver = TenantResolver(tenant_storage, clock=clock)
        await resolver.resolve("key-a")
        await resolver.resolve("key-a2")
        await resolver.resolve("key-b")

        removed = await resolver.invalidate("tenant-a")

        assert removed == 2
        assert resolver.cache_count == 1

    @pytest.mark.asyncio
    async def test_invalidate_unknown_tenant(self, tenant_storage, clock):
        """Test invalidating a tenant with nothing cached is a no-op."""
        resolver = TenantResolver(tenant_storage, clock=clock)
        assert await resolver.invalidate("missing") == 0

    @pytest.mark.asyncio
    async def test_clear(self, tenant_storage, clock):
        """Test clear empties the cache."""
        resolver = TenantResolver(tenant_storage, clock=clock)
        await resolver.resolve("key-a")
        await resolver.clear()
        assert resolver.cache_count == 0


class TestBearerTokenResolution:
    """Tests for JWT credentials."""

    @pytest.fixture
    def resolver(self, tenant_storage, clock, wall_clock, jwt_secret):
        return TenantResolver(
            tenant_storage,
            jwt_secret=jwt_secret,
            clock=clock,
            wall_clock=wall_clock,
        )

    @pytest.mark.asyncio
    async def test_valid_token(self, resolver, jwt_secret, wall_clock):
        """Test a signed, unexpired token resolves its tenant."""
        token = encode_token({"tenant_id": "tenant-a", "exp": int(wall_clock()) + 60}, jwt_secret)

        tenant = await resolver.resolve(f"Bearer {token}")

        assert tenant.tenant_id == "tenant-a"
        assert resolver.cache_count == 1

    @pytest.mark.asyncio
    async def test_malformed_token(self, resolver):
        """Test a token without three parts is rejected."""
        with pytest.raises(InvalidTokenError, match="expected 3 parts"):
            await resolver.resolve("Bearer not-a-jwt")

    @pytest.mark.asyncio
    async def test_tampered_payload(self, resolver, jwt_secret):
        """Test changing the payload breaks the signature."""
        token = encode_token({"tenant_id": "tenant-b"}, jwt_secret)
        header, _, signature = token.split(".")
        forged = base64url_encode(b'{"tenant_id":"tenant-a"}').decode()

        with pytest.raises(InvalidTokenError, match="Invalid signature"):
            await resolver.resolve(f"Bearer {header}.{forged}.{signature}")
        assert resolver.cache_count == 0

    @pytest.mark.asyncio
    async def test_wrong_secret(self, resolver):
        """Test a token signed with another secret is rejected."""
        token = encode_token({"tenant_id": "tenant-a"}, "someone-else-entirely-0123456789abcdef")
        with pytest.raises(InvalidTokenError, match="Invalid signature"):
            await resolver.resolve(f"Bearer {token}")

    @pytest.mark.asyncio
    async def test_expired_token(self, resolver, jwt_secret, wall_clock):
        """Test a token with a past exp is rejected."""
        token = encode_token({"tenant_id": "tenant-a", "exp": int(wall_clock()) - 1}, jwt_secret)
        with pytest.raises(TokenExpiredError):
            await resolver.resolve(f"Bearer {token}")

    @pytest.mark.asyncio
    async def test_fractional_exp(self, resolver, jwt_secret, wall_clock):
        """Test a non-integer exp is honoured rather than rejected as malformed."""
        token = encode_token({"tenant_id": "tenant-a", "exp": 9999999999.5}, jwt_secret)
        assert (await resolver.resolve(f"Bearer {token}")).tenant_id == "tenant-a"

        stale = encode_token({"tenant_id": "tenant-a", "exp": wall_clock() - 0.5}, jwt_secret)
        with pytest.raises(TokenExpiredError):
            await resolver.resolve(f"Bearer {stale}")

    @pytest.mark.asyncio
    async def test_missing_tenant_claim(self, resolver, jwt_secret):
        """Test a token without tenant_id is rejected."""
        token = encode_token({"sub": "user-1"}, jwt_secret)
        with pytest.raises(InvalidTokenError, match="Missing tenant_id claim"):
            await resolver.resolve(f"Bearer {token}")

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, resolver, jwt_secret):
        """Test a token naming an unknown tenant is forbidden."""
        token = encode_token({"tenant_id": "ghost"}, jwt_secret)
        with pytest.raises(TenantNotFoundError):
            await resolver.resolve(f"Bearer {token}")
        assert resolver.cache_count == 0

    @pytest.mark.asyncio
    async def test_signature_unchecked_without_secret(self, tenant_storage, clock, wall_clock):
        """Test signatures are not verified when no secret is configured."""
        resolver = TenantResolver(tenant_storage, clock=clock, wall_clock=wall_clock)
        token = encode_token({"tenant_id": "tenant-b"}, "any-secret-will-do-0123456789abcdef")

        tenant = await resolver.resolve(f"Bearer {token}")

        assert tenant.tenant_id == "tenant-b"

    @pytest.mark.asyncio
    async def test_cached_token_skips_registry(self, tenant_a, clock, wall_clock, jwt_secret):
        """Test a cached token is served without another registry lookup."""
        storage = AsyncMock()
        storage.find.return_value = tenant_a
        resolver = TenantResolver(storage, jwt_secret=jwt_secret, clock=clock, wall_clock=wall_clock)
        token = encode_token({"tenant_id": "tenant-a"}, jwt_secret)

        await resolver.resolve_bearer_token(token)
        await resolver.resolve_bearer_token(token)

        storage.find.assert_awaited_once_with("tenant-a")
