"""Per-request tenant binding.

The resolved tenant is held in a ``ContextVar`` so each request (and each
asyncio task spawned from it) sees only its own tenant. TenantMiddleware binds
it; storage wrappers and the log formatter read it back.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

from tenancy_core.exceptions import UnauthorizedError
from tenancy_core.tenancy.models import TenantContext

_bound_tenant: ContextVar[TenantContext | None] = ContextVar("tenancy_bound_tenant", default=None)

TenantToken = Token[TenantContext | None]


def get_current_tenant() -> TenantContext | None:
    """Tenant bound to the running context, if any."""
    return _bound_tenant.get()


def get_current_tenant_id() -> str | None:
    tenant = _bound_tenant.get()
    return None if tenant is None else tenant.tenant_id


def set_tenant_context(tenant: TenantContext) -> TenantToken:
    """
    Bind a tenant to the running context.

    Returns:
        A token that ``reset_tenant_context`` uses to restore the previous
        binding.
    """
    return _bound_tenant.set(tenant)


def reset_tenant_context(token: TenantToken) -> None:
    """Restore whatever binding was in place before ``set_tenant_context``."""
    _bound_tenant.reset(token)


def clear_tenant_context() -> None:
    _bound_tenant.set(None)


@contextmanager
def tenant_context(tenant: TenantContext) -> Iterator[TenantContext]:
    """
    Run a block with ``tenant`` bound, restoring the previous binding on exit.

    Usage:
        with tenant_context(tenant):
            store = isolated_store(shared_store, require_tenant())
    """
    token = set_tenant_context(tenant)
    try:
        yield tenant
    finally:
        reset_tenant_context(token)


def require_tenant() -> TenantContext:
    """
    Tenant bound to the running context.

    Raises:
        UnauthorizedError: If no tenant is bound, as happens on paths the
            middleware excludes from authentication.
    """
    tenant = _bound_tenant.get()
    if tenant is None:
        raise UnauthorizedError("No tenant bound to this request")
    return tenant


def tenant_log_fields() -> dict[str, str]:
    """Correlation fields describing the bound tenant (empty when none is bound)."""
    tenant = _bound_tenant.get()
    if tenant is None:
        return {}
    fields = {"tenant_id": tenant.tenant_id, "tenant_tier": tenant.tier.value}
    if tenant.organization_id:
        fields["organization_id"] = tenant.organization_id
    return fields
