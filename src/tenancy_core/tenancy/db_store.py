"""PostgreSQL-backed tenant registry."""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

from tenancy_core.exceptions import StorageError
from tenancy_core.tenancy.models import TenantConfiguration, TenantContext, TenantTier
from tenancy_core.tenancy.storage import hash_api_key

logger = logging.getLogger(__name__)

_TENANT_COLUMNS = "t.tenant_id, t.organization_id, t.tier, t.config, t.created_at"


def _row_to_tenant(row: asyncpg.Record) -> TenantContext:
    """Build a TenantContext from a DB row."""
    raw = row["config"]
    if isinstance(raw, str):
        overrides = json.loads(raw) if raw else {}
    else:
        overrides = dict(raw or {})

    tier = TenantTier(row["tier"])
    # Stored config is layered over the tier preset so older rows pick up new fields
    preset = TenantConfiguration.for_tier(tier).model_dump()
    return TenantContext(
        tenant_id=row["tenant_id"],
        organization_id=row["organization_id"],
        tier=tier,
        config=TenantConfiguration.model_validate({**preset, **overrides}),
        created_at=row["created_at"],
    )


@asynccontextmanager
async def _backend_errors(action: str) -> AsyncIterator[None]:
    """Translate driver and connection failures into StorageError."""
    try:
        yield
    except (asyncpg.PostgresError, OSError) as e:
        logger.error("Tenant registry %s failed: %s", action, e)
        raise StorageError(f"Tenant registry {action} failed") from e


class DbTenantStorage:
    """
    Database-backed tenant registry.

    Implements the TenantStorage protocol. API keys live in their own table as
    SHA-256 digests, so a tenant may hold several keys and raw keys are never
    stored. Deleting a tenant deactivates it and revokes its keys.

    Expected schema:

        CREATE TABLE tenants (
            tenant_id TEXT PRIMARY KEY,
            organization_id TEXT,
            tier TEXT NOT NULL,
            config JSONB NOT NULL DEFAULT '{}',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE TABLE tenant_api_keys (
            key_hash TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL REFERENCES tenants(tenant_id)
        );
    """

    def __init__(self, database_url: str) -> None:
        self._database_url = database_url
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create the connection pool."""
        self._pool = await asyncpg.create_pool(
            self._database_url,
            min_size=1,
            max_size=5,
            command_timeout=10,
        )
        logger.info("DbTenantStorage connected")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("DbTenantStorage disconnected")

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise RuntimeError("DbTenantStorage not connected. Call connect() first.")
        return self._pool


    async def find(self, tenant_id: str) -> TenantContext | None:
        """Get an active tenant by ID."""
        pool = self._require_pool()
        async with _backend_errors("lookup"):
            row = await pool.fetchrow(
                f"""
                SELECT {_TENANT_COLUMNS}
                FROM tenants t
                WHERE t.tenant_id = $1 AND t.is_active = true
                """,
                tenant_id,
            )
        return _row_to_tenant(row) if row else None

    async def find_by_api_key(self, api_key: str) -> TenantContext | None:
        """Get the active tenant owning an API key."""
        pool = self._require_pool()
        async with _backend_errors("lookup"):
            row = await pool.fetchrow(
                f"""
                SELECT {_TENANT_COLUMNS}
                FROM tenant_api_keys k
                JOIN tenants t ON t.tenant_id = k.tenant_id
                WHERE k.key_hash = $1 AND t.is_active = true
                """,
                hash_api_key(api_key),
            )
        return _row_to_tenant(row) if row else None

    async def save(self, tenant: TenantContext) -> None:
        """Insert or replace a tenant (upsert by tenant_id)."""
        pool = self._require_pool()
        async with _backend_errors("save"):
            await pool.execute(
                """
                INSERT INTO tenants (tenant_id, organization_id, tier, config, is_active, created_at, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, true, $5, NOW())
                ON CONFLICT (tenant_id)
                DO UPDATE SET
                    organization_id = EXCLUDED.organization_id,
                    tier = EXCLUDED.tier,
                    config = EXCLUDED.config,
                    is_active = true,
                    updated_at = NOW()
                """,
                tenant.tenant_id,
                tenant.organization_id,
                tenant.tier.value,
                tenant.config.model_dump_json(),
                tenant.created_at,
            )
        logger.info("Tenant upserted: %s", tenant.tenant_id)

    async def delete(self, tenant_id: str) -> None:
        """Soft-delete a tenant and revoke all of its API keys."""
        pool = self._require_pool()
        async with _backend_errors("delete"):
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "DELETE FROM tenant_api_keys WHERE tenant_id = $1",
                        tenant_id,
                    )
                    await conn.execute(
                        """
                        UPDATE tenants SET is_active = false, updated_at = NOW()
                        WHERE tenant_id = $1
                        """,
                        tenant_id,
                    )
        logger.info("Tenant deactivated: %s", tenant_id)

    async def add_api_key(self, tenant_id: str, api_key: str) -> None:
        """Register an API key (stored hashed) for a tenant."""
        pool = self._require_pool()
        async with _backend_errors("key registration"):
            await pool.execute(
                """
                INSERT INTO tenant_api_keys (key_hash, tenant_id)
                VALUES ($1, $2)
                ON CONFLICT (key_hash) DO UPDATE SET tenant_id = EXCLUDED.tenant_id
                """,
                hash_api_key(api_key),
                tenant_id,
            )

    async def revoke_api_key(self, api_key: str) -> bool:
        """Revoke an API key. Returns True if a key was removed."""
        pool = self._require_pool()
        async with _backend_errors("key revocation"):
            result = await pool.execute(
                "DELETE FROM tenant_api_keys WHERE key_hash = $1",
                hash_api_key(api_key),
            )
        return result == "DELETE 1"
