"""The VectorStore interface shared by concrete stores and the tenant wrapper."""

from typing import Protocol, runtime_checkable

from tenancy_core.storage.filters import MetadataFilter
from tenancy_core.storage.models import Chunk, Embedding, RetrievalResult


@runtime_checkable
class VectorStore(Protocol):
    """
    Minimal CRUD and similarity-search contract for chunk storage.

    ``delete`` accepts either ``ids`` or ``filter``. Deleting ids that do not
    exist is not an error.
    """

    name: str

    async def add(self, chunks: list[Chunk], embeddings: list[Embedding]) -> None:
        """Store chunks with their embeddings (same order, same length)."""
        ...

    async def search(
        self,
        query: Embedding,
        limit: int,
        filter: MetadataFilter | None = None,
    ) -> list[RetrievalResult]:
        """Return up to ``limit`` chunks most similar to ``query``."""
        ...

    async def delete(
        self,
        ids: list[str] | None = None,
        filter: MetadataFilter | None = None,
    ) -> None:
        """Delete chunks by id or by filter."""
        ...

    async def count(self) -> int:
        """Number of stored chunks."""
        ...

    async def clear(self) -> None:
        """Remove every chunk."""
        ...
