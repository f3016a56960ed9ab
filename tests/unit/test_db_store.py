"""Unit tests for DbTenantStorage with a mocked asyncpg pool."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from tenancy_core.exceptions import StorageError
from tenancy_core.tenancy.db_store import DbTenantStorage
from tenancy_core.tenancy.models import TenantContext, TenantTier
from tenancy_core.tenancy.storage import TenantStorage, hash_api_key

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _row(config="{}", tier="professional"):
    return {
        "tenant_id": "tenant-a",
        "organization_id": "org-a",
        "tier": tier,
        "config": config,
        "created_at": CREATED,
    }


@pytest.fixture
def pool():
    pool = MagicMock()
    pool.fetchrow = AsyncMock(return_value=None)
    pool.execute = AsyncMock(return_value="INSERT 0 1")
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def store(pool):
    store = DbTenantStorage(database_url="postgresql://unused")
    store._pool = pool
    return store


class TestDbTenantStorage:
    """Tests for DbTenantStorage queries and row mapping."""

    def test_satisfies_protocol(self):
        assert isinstance(DbTenantStorage("postgresql://unused"), TenantStorage)

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        """Test queries fail clearly before connect()."""
        store = DbTenantStorage(database_url="postgresql://unused")
        with pytest.raises(RuntimeError, match="not connected"):
            await store.find("tenant-a")

    @pytest.mark.asyncio
    async def test_find_maps_row(self, store, pool):
        """Test a row becomes a TenantContext with tier preset plus overrides."""
        pool.fetchrow.return_value = _row(config=json.dumps({"queries_per_minute": 7}))

        tenant = await store.find("tenant-a")

        assert tenant.tenant_id == "tenant-a"
        assert tenant.organization_id == "org-a"
        assert tenant.tier is TenantTier.PROFESSIONAL
        assert tenant.config.queries_per_minute == 7
        assert tenant.config.documents_per_day == 10000
        assert tenant.created_at == CREATED
        assert pool.fetchrow.await_args.args[1] == "tenant-a"

    @pytest.mark.asyncio
    async def test_find_accepts_decoded_jsonb(self, store, pool):
        """Test config may arrive already decoded."""
        pool.fetchrow.return_value = _row(config={"index_prefix": "acme"})

        tenant = await store.find("tenant-a")

        assert tenant.id_prefix == "acme"

    @pytest.mark.asyncio
    async def test_find_missing(self, store):
        assert await store.find("missing") is None

    @pytest.mark.asyncio
    async def test_find_by_api_key_queries_hash(self, store, pool):
        """Test lookups use the key digest, never the raw key."""
        pool.fetchrow.return_value = _row()

        tenant = await store.find_by_api_key("secret-key")

        assert tenant.tenant_id == "tenant-a"
        args = pool.fetchrow.await_args.args
        assert args[1] == hash_api_key("secret-key")
        assert "secret-key" not in args

    @pytest.mark.asyncio
    async def test_save_upserts(self, store, pool):
        """Test save sends the tenant fields and serialized config."""
        tenant = TenantContext(tenant_id="tenant-a", tier=TenantTier.FREE, created_at=CREATED)

        await store.save(tenant)

        query, *params = pool.execute.await_args.args
        assert "ON CONFLICT (tenant_id)" in query
        assert params[0] == "tenant-a"
        assert params[2] == "free"
        assert json.loads(params[3])["queries_per_minute"] == 10
        assert params[4] == CREATED

    @pytest.mark.asyncio
    async def test_add_and_revoke_api_key(self, store, pool):
        """Test keys are stored and revoked by digest."""
        await store.add_api_key("tenant-a", "new-key")
        assert pool.execute.await_args.args[1:] == (hash_api_key("new-key"), "tenant-a")

        pool.execute.return_value = "DELETE 1"
        assert await store.revoke_api_key("new-key") is True

        pool.execute.return_value = "DELETE 0"
        assert await store.revoke_api_key("new-key") is False

    @pytest.mark.asyncio
    async def test_delete_runs_in_transaction(self, store, pool):
        """Test delete revokes keys and deactivates the tenant together."""
        conn = MagicMock()
        conn.execute = AsyncMock()
        conn.transaction.return_value.__aexit__.return_value = False
        pool.acquire.return_value.__aenter__.return_value = conn
        pool.acquire.return_value.__aexit__.return_value = False

        await store.delete("tenant-a")

        statements = [call.args[0] for call in conn.execute.await_args_list]
        assert "DELETE FROM tenant_api_keys" in statements[0]
        assert "is_active = false" in statements[1]
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_backend_failure_raises_storage_error(self, store, pool):
        """Test connection failures surface as StorageError."""
        pool.fetchrow.side_effect = OSError("connection refused")

        with pytest.raises(StorageError) as exc_info:
            await store.find_by_api_key("key")
        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_close(self, store, pool):
        await store.close()
        pool.close.assert_awaited_once()
        assert store._pool is None
