"""Unit tests for tenant and storage models."""

import sys

import pytest
from pydantic import ValidationError

from tenancy_core.storage.models import Chunk, ChunkMetadata, Embedding, RetrievalResult
from tenancy_core.tenancy.models import (
    TIER_LIMITS,
    TenantConfiguration,
    TenantContext,
    TenantTier,
)


class TestTenantConfiguration:
    """Tests for TenantConfiguration."""

    def test_default_is_standard_tier(self):
        """Test the default configuration matches the standard tier preset."""
        config = TenantConfiguration.default()

        assert config.queries_per_minute == 60
        assert config.documents_per_day == 1000
        assert config.max_concurrent_websockets == 5
        assert config.enable_streaming is True
        assert config.index_prefix == ""

    def test_tier_presets_increase(self):
        """Test higher tiers get larger quotas."""
        free = TenantConfiguration.for_tier(TenantTier.FREE)
        pro = TenantConfiguration.for_tier(TenantTier.PROFESSIONAL)

        assert free.queries_per_minute < pro.queries_per_minute
        assert free.documents_per_day < pro.documents_per_day
        assert free.enable_streaming is False

    def test_enterprise_documents_unbounded(self):
        """Test enterprise ingestion is effectively unlimited."""
        config = TenantConfiguration.for_tier(TenantTier.ENTERPRISE)
        assert config.documents_per_day == sys.maxsize

    def test_every_tier_has_limits(self):
        """Test every tier has a preset."""
        assert set(TIER_LIMITS) == set(TenantTier)

    def test_negative_limits_rejected(self):
        """Test quota fields must be non-negative."""
        with pytest.raises(ValidationError):
            TenantConfiguration(queries_per_minute=-1)

    def test_configuration_is_frozen(self):
        """Test configurations cannot be mutated."""
        config = TenantConfiguration.default()
        with pytest.raises(ValidationError):
            config.queries_per_minute = 5


class TestTenantContext:
    """Tests for TenantContext."""

    def test_config_defaults_to_tier_preset(self):
        """Test an omitted config is filled from the tier."""
        tenant = TenantContext(tenant_id="t1", tier=TenantTier.FREE)
        assert tenant.config == TenantConfiguration.for_tier(TenantTier.FREE)

    def test_explicit_config_kept(self):
        """Test an explicit config overrides the tier preset."""
        config = TenantConfiguration(queries_per_minute=7)
        tenant = TenantContext(tenant_id="t1", tier=TenantTier.ENTERPRISE, config=config)
        assert tenant.config.queries_per_minute == 7

    def test_empty_tenant_id_rejected(self):
        """Test tenant_id must be non-empty."""
        with pytest.raises(ValidationError):
            TenantContext(tenant_id="")

    def test_id_prefix_uses_index_prefix(self):
        """Test id_prefix prefers config.index_prefix."""
        tenant = TenantContext(
            tenant_id="t1",
            config=TenantConfiguration(index_prefix="acme"),
        )
        assert tenant.id_prefix == "acme"

    def test_id_prefix_falls_back_to_tenant_id(self):
        """Test id_prefix falls back to the tenant id."""
        assert TenantContext(tenant_id="t1").id_prefix == "t1"

    def test_str(self):
        """Test human readable rendering."""
        tenant = TenantContext(tenant_id="t1", organization_id="org", tier=TenantTier.FREE)
        assert str(tenant) == "TenantContext(id: t1, org: org, tier: free)"

    def test_created_at_is_timezone_aware(self):
        """Test created_at defaults to an aware UTC timestamp."""
        assert TenantContext(tenant_id="t1").created_at.tzinfo is not None


class TestStorageModels:
    """Tests for chunk and retrieval models."""

    def test_embedding_dimensions(self):
        """Test dimensions reports the vector length."""
        assert Embedding(vector=[0.1, 0.2, 0.3]).dimensions == 3

    def test_retrieval_result_id(self):
        """Test RetrievalResult exposes the chunk id."""
        chunk = Chunk(id="c1", content="text", metadata=ChunkMetadata(document_id="d1"))
        result = RetrievalResult(chunk=chunk, score=0.5)

        assert result.id == "c1"
        assert result.metadata == {}
