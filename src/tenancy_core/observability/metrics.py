"""OpenTelemetry metrics for tenant access control."""

import logging
from typing import Any

from opentelemetry import metrics

from tenancy_core.config import get_settings

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: "MetricsRegistry | None" = None


class MetricsRegistry:
    """
    Registry for OpenTelemetry metrics.

    Provides pre-defined instruments for:
    - Tenant resolution outcomes (by credential type)
    - Credential cache hits, misses and evictions
    - Rate limiting rejections
    """

    def __init__(self, meter_name: str = "tenancy_core", enabled: bool = True) -> None:
        """
        Initialize the metrics registry.

        Args:
            meter_name: Name for the meter.
            enabled: If False, every record call is a no-op.
        """
        self._instruments: dict[str, Any] = {}
        self._meter = metrics.get_meter(meter_name) if enabled else None
        if self._meter is not None:
            self._create_instruments()
            logger.debug("Metrics registry initialized")

    def _create_instruments(self) -> None:
        """Create all metric instruments."""
        self._instruments["tenant_resolution_total"] = self._meter.create_counter(
            name="tenant_resolution_total",
            description="Tenant resolutions by credential type and outcome",
            unit="1",
        )

        self._instruments["credential_cache_total"] = self._meter.create_counter(
            name="credential_cache_lookups_total",
            description="Credential cache lookups by result (hit or miss)",
            unit="1",
        )

        self._instruments["credential_cache_evictions"] = self._meter.create_counter(
            name="credential_cache_evictions_total",
            description="Credential cache entries removed by LRU sweeps",
            unit="1",
        )

        self._instruments["rate_limit_exceeded"] = self._meter.create_counter(
            name="rate_limit_exceeded_total",
            description="Number of rate limit exceeded events",
            unit="1",
        )

    def record_tenant_resolution(self, method: str, outcome: str) -> None:
        """
        Record a tenant resolution attempt.

        Args:
            method: api_key or jwt.
            outcome: success or the error code of the failure.
        """
        if "tenant_resolution_total" in self._instruments:
            self._instruments["tenant_resolution_total"].add(
                1, {"method": method, "outcome": outcome}
            )

    def record_cache_lookup(self, hit: bool) -> None:
        """Record a credential cache lookup."""
        if "credential_cache_total" in self._instruments:
            self._instruments["credential_cache_total"].add(
                1, {"result": "hit" if hit else "miss"}
            )

    def record_cache_eviction(self, count: int) -> None:
        """Record entries removed by an LRU sweep."""
        if "credential_cache_evictions" in self._instruments:
            self._instruments["credential_cache_evictions"].add(count)

    def record_rate_limit_exceeded(self, tenant_id: str, operation: str) -> None:
        """
        Record rate limit exceeded event.

        Args:
            tenant_id: Tenant ID.
            operation: The rate-limited operation.
        """
        if "rate_limit_exceeded" in self._instruments:
            self._instruments["rate_limit_exceeded"].add(
                1, {"tenant_id": tenant_id, "operation": operation}
            )


def get_metrics_registry() -> MetricsRegistry:
    """
    Get the global metrics registry.

    Creates one if it doesn't exist, honouring ``enable_metrics``.
    """
    global _metrics_registry
    if _metrics_registry is None:
        settings = get_settings()
        _metrics_registry = MetricsRegistry(
            meter_name=settings.service_name,
            enabled=settings.enable_metrics,
        )
    return _metrics_registry


# Convenience functions that use the global registry


def record_tenant_resolution(method: str, outcome: str) -> None:
    """Record a tenant resolution attempt."""
    get_metrics_registry().record_tenant_resolution(method, outcome)


def record_cache_lookup(hit: bool) -> None:
    """Record a credential cache lookup."""
    get_metrics_registry().record_cache_lookup(hit)


def record_cache_eviction(count: int) -> None:
    """Record entries removed by an LRU sweep."""
    get_metrics_registry().record_cache_eviction(count)


def record_rate_limit_exceeded(tenant_id: str, operation: str) -> None:
    """Record rate limit exceeded event."""
    get_metrics_registry().record_rate_limit_exceeded(tenant_id, operation)
