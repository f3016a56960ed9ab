"""Chunk and retrieval models exchanged with vector stores."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Embedding(BaseModel):
    """An embedding vector and the model that produced it."""

    model_config = ConfigDict(frozen=True)

    vector: list[float]
    model: str | None = None

    @property
    def dimensions(self) -> int:
        return len(self.vector)


class ChunkMetadata(BaseModel):
    """Positional metadata of a chunk plus free-form ``custom`` fields."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    index: int = 0
    start_offset: int = 0
    end_offset: int = 0
    source: str | None = None
    custom: dict[str, Any] = Field(default_factory=dict)


class Chunk(BaseModel):
    """A piece of a document stored in a vector store."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    metadata: ChunkMetadata
    embedding: Embedding | None = None


class RetrievalResult(BaseModel):
    """A chunk returned by a search together with its similarity score."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.chunk.id
