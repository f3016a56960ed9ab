"""In-memory VectorStore for development and testing."""

import asyncio
import logging

import numpy as np

from tenancy_core.storage.filters import MetadataFilter
from tenancy_core.storage.models import Chunk, Embedding, RetrievalResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when dimensions differ or a vector is zero."""
    if len(a) != len(b) or not a:
        return 0.0
    vec1 = np.asarray(a, dtype=np.float64)
    vec2 = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(vec1) * np.linalg.norm(vec2))
    if norm == 0.0:
        return 0.0
    return float(np.dot(vec1, vec2) / norm)


class InMemoryVectorStore:
    """
    Vector store holding chunks in a dict.

    Search is a brute-force cosine similarity scan over the chunks that pass
    the filter. Not intended for production volumes.
    """

    def __init__(self, name: str = "in_memory") -> None:
        self.name = name
        self._chunks: dict[str, tuple[Chunk, Embedding]] = {}
        self._lock = asyncio.Lock()

    async def add(self, chunks: list[Chunk], embeddings: list[Embedding]) -> None:
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings"
            )
        async with self._lock:
            for chunk, embedding in zip(chunks, embeddings):
                self._chunks[chunk.id] = (chunk, embedding)

    async def search(
        self,
        query: Embedding,
        limit: int,
        filter: MetadataFilter | None = None,
    ) -> list[RetrievalResult]:
        if limit <= 0:
            return []
        async with self._lock:
            candidates = [
                (chunk, embedding)
                for chunk, embedding in self._chunks.values()
                if filter is None or filter.matches(chunk)
            ]

        results = [
            RetrievalResult(
                chunk=chunk,
                score=cosine_similarity(query.vector, embedding.vector),
            )
            for chunk, embedding in candidates
        ]
        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]

    async def delete(
        self,
        ids: list[str] | None = None,
        filter: MetadataFilter | None = None,
    ) -> None:
        if ids is None and filter is None:
            raise ValueError("delete() requires ids or filter")
        async with self._lock:
            for chunk_id in ids or ():
                self._chunks.pop(chunk_id, None)
            if filter is not None:
                self._chunks = {
                    chunk_id: entry
                    for chunk_id, entry in self._chunks.items()
                    if not filter.matches(entry[0])
                }

    async def count(self) -> int:
        async with self._lock:
            return len(self._chunks)

    async def clear(self) -> None:
        async with self._lock:
            self._chunks.clear()
        logger.debug("Cleared vector store %s", self.name)
