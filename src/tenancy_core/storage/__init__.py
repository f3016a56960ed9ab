"""Vector storage interfaces and tenant-isolated access."""

from tenancy_core.storage.base import VectorStore
from tenancy_core.storage.filters import FilterOperator, MetadataFilter
from tenancy_core.storage.isolated import TenantIsolatedVectorStore, isolated_store
from tenancy_core.storage.memory import InMemoryVectorStore
from tenancy_core.storage.models import Chunk, ChunkMetadata, Embedding, RetrievalResult

__all__ = [
    "VectorStore",
    "TenantIsolatedVectorStore",
    "isolated_store",
    "InMemoryVectorStore",
    "MetadataFilter",
    "FilterOperator",
    "Chunk",
    "ChunkMetadata",
    "Embedding",
    "RetrievalResult",
]
