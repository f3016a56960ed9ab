"""Observability module for metrics and logging."""

from tenancy_core.observability.logging import configure_logging, get_logger
from tenancy_core.observability.metrics import (
    MetricsRegistry,
    get_metrics_registry,
    record_cache_eviction,
    record_cache_lookup,
    record_rate_limit_exceeded,
    record_tenant_resolution,
)

__all__ = [
    # Metrics
    "MetricsRegistry",
    "get_metrics_registry",
    "record_tenant_resolution",
    "record_cache_lookup",
    "record_cache_eviction",
    "record_rate_limit_exceeded",
    # Logging
    "configure_logging",
    "get_logger",
]
