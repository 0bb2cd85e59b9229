"""Pydantic schemas for hybrid retrieval."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SourceType(str, Enum):
    """Corpus a chunk came from."""

    EMBEDDED_TEXT = "embedded-text"
    TRANSCRIPT = "transcript"


class ChunkMetadata(BaseModel):
    """Citation metadata attached to a retrieved chunk."""

    title: str = ""
    source_url: str = ""
    timestamp: datetime | None = None
    tags: list[str] = Field(default_factory=list)


class Chunk(BaseModel):
    """A retrievable unit of text from either corpus.

    ``source_key`` groups chunks by originating document or video and is
    what diversity selection balances on. ``score`` is a similarity or
    relevance value normalized to [0, 1].
    """

    id: str
    content: str
    source_key: str
    source_type: SourceType
    score: float = Field(ge=0.0, le=1.0)
    embedding: list[float] | None = None
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class RetrievalResult(BaseModel):
    """Ranked chunks returned for one query."""

    model_config = ConfigDict(frozen=True)

    chunks: tuple[Chunk, ...] = ()
    sources: frozenset[str] = frozenset()
    total_candidates: int = 0


class SourceAttribution(BaseModel):
    """One cited source for an answer."""

    source_key: str
    title: str
    url: str
    source_type: SourceType
    relevance_score: float


class KnowledgeDocument(BaseModel):
    """A text document to add to the embedded corpus."""

    source_key: str
    title: str
    url: str = ""
    content: str
    tags: list[str] = Field(default_factory=list)


class KnowledgeChunk(BaseModel):
    """A document chunk with its embedding, as stored in the vector index."""

    source_key: str
    chunk_index: int
    content: str
    token_count: int
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)
