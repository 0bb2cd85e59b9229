"""Embedded text corpus stored in a Supabase vector table."""

from typing import Any

from supabase import Client

from src.utils.clients import create_supabase_client
from src.utils.logging import get_logger

from .config import RetrievalConfig
from .embedding_service import EmbeddingService
from .schemas import Chunk, ChunkMetadata, KnowledgeChunk, RetrievalResult, SourceType

logger = get_logger(__name__)


class KnowledgeStore:
    """Stores embedded document chunks and answers vector similarity queries."""

    def __init__(
        self,
        config: RetrievalConfig,
        embedding_service: EmbeddingService,
        client: Client | None = None,
    ):
        """Initialize knowledge store with configuration.

        Args:
            config: Configuration object with Supabase credentials.
            embedding_service: Service used to embed query text.
            client: Optional pre-built Supabase client.
        """
        self.config = config
        self.embedding_service = embedding_service
        self.client: Client = client or create_supabase_client(
            config.supabase_url,
            config.supabase_key,
        )
        logger.info("knowledge_store_initialized", table=config.knowledge_table)

    async def save_chunks(self, chunks: list[KnowledgeChunk]) -> None:
        """Save document chunks with embeddings to the database.

        Raises:
            Exception: If database operation fails.
        """
        if not chunks:
            return

        try:
            data = [chunk.model_dump() for chunk in chunks]
            self.client.table(self.config.knowledge_table).insert(data).execute()
            logger.info(
                "knowledge_chunks_saved",
                count=len(chunks),
                source_key=chunks[0].source_key,
            )

        except Exception as e:
            logger.exception(
                "knowledge_chunks_save_failed",
                count=len(chunks),
                error_type=type(e).__name__,
            )
            raise

    async def search_chunks(
        self,
        query_embedding: list[float],
        match_count: int = 5,
        filter_metadata: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Search for similar chunks using vector similarity.

        Args:
            query_embedding: Query embedding vector.
            match_count: Number of results to return.
            filter_metadata: Optional JSONB filter for metadata.

        Returns:
            Matching rows with a ``similarity`` score.

        Raises:
            Exception: If search operation fails.
        """
        try:
            response = self.client.rpc(
                self.config.match_function,
                {
                    "query_embedding": query_embedding,
                    "match_count": match_count,
                    "filter": filter_metadata or {},
                },
            ).execute()

            results: list[dict[str, Any]] = response.data or []
            logger.info(
                "vector_search_completed",
                results=len(results),
                match_count=match_count,
            )
            return results

        except Exception as e:
            logger.exception("vector_search_failed", error_type=type(e).__name__)
            raise

    async def query(self, text: str, top_k: int = 5) -> RetrievalResult:
        """Embed the query and return the ``top_k`` most similar chunks.

        Raises:
            Exception: If embedding or search fails.
        """
        embedding = await self.embedding_service.embed_text(text)
        rows = await self.search_chunks(embedding, match_count=top_k)
        chunks = [self._to_chunk(row) for row in rows]
        return RetrievalResult(
            chunks=tuple(chunks),
            sources=frozenset(chunk.source_key for chunk in chunks),
            total_candidates=len(chunks),
        )

    @staticmethod
    def _to_chunk(row: dict[str, Any]) -> Chunk:
        metadata = row.get("metadata") or {}
        similarity = float(row.get("similarity") or 0.0)
        return Chunk(
            id=str(row.get("id", "")),
            content=row.get("content", ""),
            source_key=row.get("source_key") or str(row.get("id", "")),
            source_type=SourceType.EMBEDDED_TEXT,
            score=min(max(similarity, 0.0), 1.0),
            metadata=ChunkMetadata(
                title=metadata.get("title", ""),
                source_url=metadata.get("url", ""),
                tags=list(metadata.get("tags") or []),
            ),
        )
