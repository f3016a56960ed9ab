"""Multi-tenant credential resolution, rate limiting and context."""

from tenancy_core.tenancy.context import (
    clear_tenant_context,
    get_current_tenant,
    get_current_tenant_id,
    require_tenant,
    reset_tenant_context,
    set_tenant_context,
    tenant_context,
    tenant_log_fields,
)
from tenancy_core.tenancy.models import (
    RateLimitOperation,
    TenantConfiguration,
    TenantContext,
    TenantTier,
)
from tenancy_core.tenancy.storage import InMemoryTenantStorage, TenantStorage, hash_api_key
from tenancy_core.tenancy.resolver import TenantResolver
from tenancy_core.tenancy.rate_limiter import LimitInfo, TenantRateLimiter
from tenancy_core.tenancy.middleware import TenantMiddleware

__all__ = [
    # Context
    "get_current_tenant",
    "get_current_tenant_id",
    "set_tenant_context",
    "reset_tenant_context",
    "clear_tenant_context",
    "tenant_context",
    "require_tenant",
    "tenant_log_fields",
    # Models
    "TenantContext",
    "TenantConfiguration",
    "TenantTier",
    "RateLimitOperation",
    # Registry
    "TenantStorage",
    "InMemoryTenantStorage",
    "hash_api_key",
    # Resolution
    "TenantResolver",
    # Rate limiting
    "TenantRateLimiter",
    "LimitInfo",
    # Middleware
    "TenantMiddleware",
]
