"""Tenant registry interface and an in-memory implementation."""

import asyncio
import hashlib
import logging
from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from tenancy_core.tenancy.models import TenantContext

logger = logging.getLogger(__name__)


def hash_api_key(api_key: str) -> str:
    """
    Hash an API key for storage.

    Registries should persist this digest rather than the raw key.

    Returns:
        The lowercase hex SHA-256 digest of the key.
    """
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


@runtime_checkable
class TenantStorage(Protocol):
    """
    Lookup interface for the tenant registry.

    Implementations may raise their own backend errors; callers propagate
    them unchanged.
    """

    async def find(self, tenant_id: str) -> TenantContext | None:
        """Find a tenant by its ID."""
        ...

    async def find_by_api_key(self, api_key: str) -> TenantContext | None:
        """Find the tenant owning an API key."""
        ...

    async def save(self, tenant: TenantContext) -> None:
        """Insert or replace a tenant."""
        ...

    async def delete(self, tenant_id: str) -> None:
        """Remove a tenant and its API keys."""
        ...


class InMemoryTenantStorage:
    """
    Simple in-memory tenant registry for development and testing.

    In production this would be backed by a database (see DbTenantStorage).
    A tenant may hold any number of API keys; keys are kept hashed.
    """

    def __init__(
        self,
        tenants: Iterable[TenantContext] = (),
        api_keys: Mapping[str, str] | None = None,
    ) -> None:
        """
        Initialize the registry, optionally with seed data.

        Args:
            tenants: Tenants to register up front.
            api_keys: Raw API key to tenant ID mapping; every tenant must be in ``tenants``.
        """
        self._tenants: dict[str, TenantContext] = {t.tenant_id: t for t in tenants}
        self._api_keys: dict[str, str] = {}
        for api_key, tenant_id in (api_keys or {}).items():
            if tenant_id not in self._tenants:
                raise KeyError(f"Unknown tenant: {tenant_id}")
            self._api_keys[hash_api_key(api_key)] = tenant_id
        self._lock = asyncio.Lock()

    async def find(self, tenant_id: str) -> TenantContext | None:
        async with self._lock:
            return self._tenants.get(tenant_id)

    async def find_by_api_key(self, api_key: str) -> TenantContext | None:
        async with self._lock:
            tenant_id = self._api_keys.get(hash_api_key(api_key))
            if tenant_id is None:
                return None
            return self._tenants.get(tenant_id)

    async def save(self, tenant: TenantContext) -> None:
        async with self._lock:
            self._tenants[tenant.tenant_id] = tenant
        logger.debug("Tenant saved: %s", tenant.tenant_id)

    async def delete(self, tenant_id: str) -> None:
        async with self._lock:
            self._tenants.pop(tenant_id, None)
            self._api_keys = {
                key: owner for key, owner in self._api_keys.items() if owner != tenant_id
            }

    async def add_api_key(self, tenant_id: str, api_key: str) -> None:
        """
        Register an API key for an existing tenant.

        Raises:
            KeyError: If the tenant has not been saved.
        """
        async with self._lock:
            if tenant_id not in self._tenants:
                raise KeyError(f"Unknown tenant: {tenant_id}")
            self._api_keys[hash_api_key(api_key)] = tenant_id

    async def revoke_api_key(self, api_key: str) -> bool:
        """Revoke an API key. Returns True if the key existed."""
        async with self._lock:
            return self._api_keys.pop(hash_api_key(api_key), None) is not None

    async def list_tenants(self) -> list[TenantContext]:
        """List all tenants."""
        async with self._lock:
            return list(self._tenants.values())
