"""VectorStore wrapper that scopes every operation to a single tenant."""

import logging

from tenancy_core.config import get_settings
from tenancy_core.storage.base import VectorStore
from tenancy_core.storage.filters import MetadataFilter
from tenancy_core.storage.models import Chunk, Embedding, RetrievalResult
from tenancy_core.tenancy.models import TenantContext

logger = logging.getLogger(__name__)

TENANT_METADATA_KEY = "_tenantId"
ORIGINAL_DOCUMENT_ID_KEY = "_originalDocumentId"


class TenantIsolatedVectorStore:
    """
    Tenant-scoped view over a shared vector store.

    On write, chunk ids and document ids are prefixed with ``"{prefix}_"``
    (``config.index_prefix``, or the tenant id when that is empty) and two
    custom metadata fields are injected: the owning tenant id and the
    original document id. Every read, delete and count is ANDed with a
    tenant-id filter, and results are restored so callers never see the
    prefixes or the injected fields.

    ``count()`` has no native filtered count to rely on. It searches with the
    tenant filter and ``count_limit`` as the result cap, so tenants holding
    more than ``count_limit`` chunks are under-counted.
    """

    def __init__(
        self,
        underlying: VectorStore,
        tenant: TenantContext,
        count_limit: int | None = None,
    ) -> None:
        """
        Initialize the wrapper.

        Args:
            underlying: The shared store to delegate to.
            tenant: The tenant every operation is scoped to.
            count_limit: Result cap for ``count()`` (defaults to settings).

        Raises:
            ValueError: If count_limit is below 1.
        """
        if count_limit is None:
            count_limit = get_settings().isolated_count_limit
        if count_limit < 1:
            raise ValueError(f"count_limit must be at least 1, got {count_limit}")

        self._underlying = underlying
        self.tenant_id = tenant.tenant_id
        self.id_prefix = tenant.id_prefix
        self.count_limit = count_limit
        self.name = f"{underlying.name}[tenant:{tenant.tenant_id}]"

    def __repr__(self) -> str:
        return f'TenantIsolatedVectorStore(name: "{self.name}")'

    # VectorStore protocol

    async def add(self, chunks: list[Chunk], embeddings: list[Embedding]) -> None:
        isolated = [self._isolate_chunk(chunk) for chunk in chunks]
        await self._underlying.add(isolated, embeddings)

    async def search(
        self,
        query: Embedding,
        limit: int,
        filter: MetadataFilter | None = None,
    ) -> list[RetrievalResult]:
        results = await self._underlying.search(
            query, limit, filter=self._with_tenant_filter(filter)
        )
        return [
            RetrievalResult(
                chunk=self._restore_chunk(result.chunk),
                score=result.score,
                metadata=result.metadata,
            )
            for result in results
        ]

    async def delete(
        self,
        ids: list[str] | None = None,
        filter: MetadataFilter | None = None,
    ) -> None:
        if ids is None and filter is None:
            raise ValueError("delete() requires ids or filter")
        if ids is not None:
            await self._underlying.delete(ids=[self._prefix_id(i) for i in ids])
        if filter is not None:
            await self._underlying.delete(filter=self._with_tenant_filter(filter))

    async def count(self) -> int:
        # Stores expect a query vector even when only filtering
        results = await self._underlying.search(
            Embedding(vector=[0.0]),
            self.count_limit,
            filter=self.tenant_filter,
        )
        if len(results) >= self.count_limit:
            logger.warning(
                "count() hit the %d result cap for tenant %s; the real count may be higher",
                self.count_limit,
                self.tenant_id,
            )
        return len(results)

    async def clear(self) -> None:
        # Never clear the underlying store; other tenants share it
        await self._underlying.delete(filter=self.tenant_filter)
        logger.info("Cleared all chunks for tenant %s", self.tenant_id)

    # Helpers

    @property
    def tenant_filter(self) -> MetadataFilter:
        """Filter matching only this tenant's chunks."""
        return MetadataFilter.equals(TENANT_METADATA_KEY, self.tenant_id)

    def _with_tenant_filter(self, filter: MetadataFilter | None) -> MetadataFilter:
        if filter is None:
            return self.tenant_filter
        return MetadataFilter.and_(self.tenant_filter, filter)

    def _prefix_id(self, value: str) -> str:
        return f"{self.id_prefix}_{value}"

    def _strip_prefix(self, value: str) -> str:
        prefix = f"{self.id_prefix}_"
        return value[len(prefix):] if value.startswith(prefix) else value

    def _isolate_chunk(self, chunk: Chunk) -> Chunk:
        custom = {
            **chunk.metadata.custom,
            TENANT_METADATA_KEY: self.tenant_id,
            ORIGINAL_DOCUMENT_ID_KEY: chunk.metadata.document_id,
        }
        metadata = chunk.metadata.model_copy(
            update={"document_id": self._prefix_id(chunk.metadata.document_id), "custom": custom}
        )
        return chunk.model_copy(update={"id": self._prefix_id(chunk.id), "metadata": metadata})

    def _restore_chunk(self, chunk: Chunk) -> Chunk:
        custom = dict(chunk.metadata.custom)
        custom.pop(TENANT_METADATA_KEY, None)
        original = custom.pop(ORIGINAL_DOCUMENT_ID_KEY, None)
        if not isinstance(original, str):
            original = self._strip_prefix(chunk.metadata.document_id)

        metadata = chunk.metadata.model_copy(update={"document_id": original, "custom": custom})
        return chunk.model_copy(update={"id": self._strip_prefix(chunk.id), "metadata": metadata})


def isolated_store(
    store: VectorStore,
    tenant: TenantContext,
    count_limit: int | None = None,
) -> TenantIsolatedVectorStore:
    """Wrap ``store`` so that every operation is scoped to ``tenant``."""
    return TenantIsolatedVectorStore(store, tenant, count_limit=count_limit)
