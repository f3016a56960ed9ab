"""Tenant models and configuration."""

import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TenantTier(str, Enum):
    """Tenant subscription tiers with different quotas and features."""

    FREE = "free"
    STANDARD = "standard"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class RateLimitOperation(str, Enum):
    """Operations that are rate limited independently per tenant."""

    QUERY = "query"
    INGEST = "ingest"
    WEBSOCKET = "websocket"
    BATCH_EMBED = "batch_embed"
    RETRIEVE = "retrieve"


# Default quotas by tier
TIER_LIMITS: dict[TenantTier, dict[str, Any]] = {
    TenantTier.FREE: {
        "queries_per_minute": 10,
        "documents_per_day": 100,
        "max_concurrent_websockets": 1,
        "max_document_size": 1_048_576,  # 1 MB
        "max_chunks_per_document": 100,
        "enable_streaming": False,
    },
    TenantTier.STANDARD: {
        "queries_per_minute": 60,
        "documents_per_day": 1000,
        "max_concurrent_websockets": 5,
        "max_document_size": 10_485_760,  # 10 MB
        "max_chunks_per_document": 1000,
        "enable_streaming": True,
    },
    TenantTier.PROFESSIONAL: {
        "queries_per_minute": 300,
        "documents_per_day": 10000,
        "max_concurrent_websockets": 25,
        "max_document_size": 52_428_800,  # 50 MB
        "max_chunks_per_document": 5000,
        "enable_streaming": True,
    },
    TenantTier.ENTERPRISE: {
        "queries_per_minute": 1000,
        "documents_per_day": sys.maxsize,  # unlimited
        "max_concurrent_websockets": 100,
        "max_document_size": 104_857_600,  # 100 MB
        "max_chunks_per_document": 10000,
        "enable_streaming": True,
    },
}


class TenantConfiguration(BaseModel):
    """Quotas and feature settings for a tenant."""

    model_config = ConfigDict(frozen=True)

    # Rate limits
    queries_per_minute: int = Field(default=60, ge=0)
    documents_per_day: int = Field(default=1000, ge=0)
    max_concurrent_websockets: int = Field(default=5, ge=0)

    # Size limits
    max_document_size: int = Field(default=10_485_760, ge=0)
    max_chunks_per_document: int = Field(default=1000, ge=0)

    # Features
    embedding_model: str | None = None
    # Namespaces chunk and document ids in shared stores (empty means the tenant id).
    # Must be unique across tenants: two tenants sharing a prefix overwrite each
    # other's chunks that have the same id.
    index_prefix: str = ""
    enable_streaming: bool = True

    @classmethod
    def default(cls) -> "TenantConfiguration":
        """Configuration used for tenants with nothing registered."""
        return cls.for_tier(TenantTier.STANDARD)

    @classmethod
    def for_tier(cls, tier: TenantTier) -> "TenantConfiguration":
        """
        Build the preset configuration for a tier.

        Args:
            tier: The subscription tier.

        Returns:
            A configuration populated with the tier's default limits.
        """
        return cls(**TIER_LIMITS[TenantTier(tier)])


class TenantContext(BaseModel):
    """
    Identity and configuration of a resolved tenant.

    Produced by a tenant registry lookup and treated as read-only by every
    consumer. When no configuration is supplied the tier preset is used.
    """

    tenant_id: str = Field(min_length=1)
    organization_id: str | None = None
    tier: TenantTier = TenantTier.STANDARD
    config: TenantConfiguration = Field(default_factory=TenantConfiguration.default)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="before")
    @classmethod
    def _default_config_from_tier(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("config") is None:
            data = dict(data)
            data["config"] = TenantConfiguration.for_tier(
                data.get("tier", TenantTier.STANDARD)
            )
        return data

    @property
    def id_prefix(self) -> str:
        """Prefix used to namespace this tenant's identifiers in shared stores."""
        return self.config.index_prefix or self.tenant_id

    def __str__(self) -> str:
        org = f", org: {self.organization_id}" if self.organization_id else ""
        return f"TenantContext(id: {self.tenant_id}{org}, tier: {self.tier.value})"

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={"examples": [
            {
                "tenant_id": "tenant-001",
                "organization_id": "org-acme",
                "tier": "professional",
                "config": {"queries_per_minute": 300, "index_prefix": "acme"},
            }
        ]},
    )
