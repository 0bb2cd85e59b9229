"""Hybrid retrieval over the embedded corpus and raw media transcripts.

The embedded corpus is queried by vector similarity. Transcripts are not
embedded; they are found by full-text search, split into sentence chunks and
scored by keyword relevance on the fly. Both candidate lists are merged with
a selection that guarantees source coverage before letting any one source
contribute more than its share.
"""

import asyncio
import math
from collections import Counter
from collections.abc import Sequence

from src.media_pipeline.schemas import MediaEntry, ProcessingStatus
from src.media_pipeline.storage_service import MediaStore
from src.utils.logging import get_logger

from .config import RetrievalConfig
from .knowledge_store import KnowledgeStore
from .relevance import score_relevance
from .schemas import Chunk, ChunkMetadata, RetrievalResult, SourceAttribution, SourceType
from .text_chunker import TextChunker

logger = get_logger(__name__)


class RetrievalError(Exception):
    """Raised when no corpus could be queried."""


def select_diverse(
    candidates: Sequence[Chunk],
    top_k: int,
    per_source_cap: int,
) -> list[Chunk]:
    """Pick up to ``top_k`` chunks, spreading them across sources.

    The first pass takes the best chunk of each source in score order. If
    slots remain, a second pass adds further chunks from already represented
    sources while keeping each source at no more than ``per_source_cap``
    chunks.

    Args:
        candidates: Scored chunks from any corpus.
        top_k: Maximum number of chunks to return.
        per_source_cap: Maximum chunks per source after the second pass.

    Returns:
        Selected chunks sorted by score, highest first.
    """
    ranked = sorted(candidates, key=lambda chunk: chunk.score, reverse=True)
    selected: list[int] = []
    per_source: Counter[str] = Counter()

    for index, chunk in enumerate(ranked):
        if len(selected) >= top_k:
            break
        if chunk.source_key in per_source:
            continue
        selected.append(index)
        per_source[chunk.source_key] += 1

    if len(selected) < top_k:
        taken = set(selected)
        for index, chunk in enumerate(ranked):
            if len(selected) >= top_k:
                break
            if index in taken or per_source[chunk.source_key] >= per_source_cap:
                continue
            selected.append(index)
            per_source[chunk.source_key] += 1

    return sorted((ranked[index] for index in selected), key=lambda chunk: chunk.score, reverse=True)


class HybridRetriever:
    """Answers queries from both corpora with source-balanced results.

    Args:
        config: Retrieval configuration with the diversity constants.
        knowledge_store: Embedded corpus.
        media_store: Media store holding transcripts.
        chunker: Transcript chunker. Built from config if None.
    """

    def __init__(
        self,
        config: RetrievalConfig,
        knowledge_store: KnowledgeStore,
        media_store: MediaStore,
        chunker: TextChunker | None = None,
    ):
        self.config = config
        self.knowledge_store = knowledge_store
        self.media_store = media_store
        self.chunker = chunker or TextChunker(config.chunk_size, config.chunk_overlap)

    async def query(self, text: str, top_k: int = 5) -> RetrievalResult:
        """Retrieve the ``top_k`` best chunks for a query.

        Never raises. If one corpus fails the other is used alone; if both
        fail, a direct embedded-corpus query at full ``top_k`` is tried, and
        if that fails too the result is empty.

        Args:
            text: User query.
            top_k: Maximum number of chunks.

        Returns:
            RetrievalResult with ranked chunks.
        """
        try:
            return await self._hybrid_query(text, top_k)
        except Exception as e:
            logger.exception("hybrid_query_failed", error_type=type(e).__name__)

        try:
            result = await self.knowledge_store.query(text, top_k)
            logger.info("fallback_query_completed", chunks=len(result.chunks))
            return result
        except Exception as e:
            logger.exception("fallback_query_failed", error_type=type(e).__name__)
            return RetrievalResult()

    async def _hybrid_query(self, text: str, top_k: int) -> RetrievalResult:
        embedded_k = max(1, math.ceil(top_k * self.config.embedded_share))

        embedded, transcript = await asyncio.gather(
            self.knowledge_store.query(text, embedded_k),
            self._transcript_candidates(text, top_k),
            return_exceptions=True,
        )

        if isinstance(embedded, BaseException) and isinstance(transcript, BaseException):
            raise RetrievalError("Both corpora failed") from transcript

        candidates: list[Chunk] = []
        if isinstance(embedded, BaseException):
            logger.warning(
                "embedded_query_failed",
                error_type=type(embedded).__name__,
                error=str(embedded),
            )
        else:
            candidates.extend(embedded.chunks)

        if isinstance(transcript, BaseException):
            logger.warning(
                "transcript_query_failed",
                error_type=type(transcript).__name__,
                error=str(transcript),
            )
        else:
            candidates.extend(transcript)

        cap = top_k // self.config.per_source_cap_divisor
        chunks = select_diverse(candidates, top_k, cap)
        result = RetrievalResult(
            chunks=tuple(chunks),
            sources=frozenset(chunk.source_key for chunk in chunks),
            total_candidates=len(candidates),
        )

        logger.info(
            "hybrid_query_completed",
            top_k=top_k,
            embedded_k=embedded_k,
            candidates=len(candidates),
            chunks=len(chunks),
            sources=len(result.sources),
        )
        return result

    async def _transcript_candidates(self, text: str, top_k: int) -> list[Chunk]:
        limit = self.config.transcript_candidate_multiplier * top_k
        entries = await self.media_store.search_entries(text, limit)

        candidates: list[Chunk] = []
        for entry in entries:
            if entry.processing_status != ProcessingStatus.COMPLETED or not entry.transcript:
                continue
            candidates.extend(self._score_transcript(entry, text))
        return candidates

    def _score_transcript(self, entry: MediaEntry, query: str) -> list[Chunk]:
        scored: list[Chunk] = []
        for index, piece in enumerate(self.chunker.split(entry.transcript)):
            score = score_relevance(piece, query)
            if score <= self.config.min_relevance:
                continue
            scored.append(
                Chunk(
                    id=f"{entry.key}-chunk-{index}",
                    content=piece,
                    source_key=entry.key,
                    source_type=SourceType.TRANSCRIPT,
                    score=score,
                    metadata=ChunkMetadata(
                        title=entry.title,
                        source_url=entry.source_url,
                        timestamp=entry.publish_date,
                        tags=list(entry.tags),
                    ),
                )
            )

        scored.sort(key=lambda chunk: chunk.score, reverse=True)
        return scored[: self.config.max_chunks_per_transcript]

    @staticmethod
    def source_attributions(chunks: Sequence[Chunk]) -> list[SourceAttribution]:
        """One attribution per source, from its first chunk, best score first."""
        seen: set[str] = set()
        attributions: list[SourceAttribution] = []
        for chunk in chunks:
            if chunk.source_key in seen:
                continue
            seen.add(chunk.source_key)
            attributions.append(
                SourceAttribution(
                    source_key=chunk.source_key,
                    title=chunk.metadata.title,
                    url=chunk.metadata.source_url,
                    source_type=chunk.source_type,
                    relevance_score=chunk.score,
                )
            )
        return sorted(attributions, key=lambda item: item.relevance_score, reverse=True)
