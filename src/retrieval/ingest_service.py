"""Ingestion of text documents into the embedded corpus."""

from src.utils.logging import get_logger

from .chunking_service import ChunkingService
from .embedding_service import EmbeddingService
from .knowledge_store import KnowledgeStore
from .schemas import KnowledgeChunk, KnowledgeDocument

logger = get_logger(__name__)


class KnowledgeIngestService:
    """Chunks, embeds and stores documents in the embedded corpus."""

    def __init__(
        self,
        chunking_service: ChunkingService,
        embedding_service: EmbeddingService,
        store: KnowledgeStore,
    ):
        self.chunking_service = chunking_service
        self.embedding_service = embedding_service
        self.store = store

    async def ingest_document(self, document: KnowledgeDocument) -> int:
        """Add one document to the embedded corpus.

        Args:
            document: Document to ingest.

        Returns:
            Number of chunks stored.

        Raises:
            Exception: If embedding or storage fails.
        """
        logger.info(
            "document_ingest_started",
            source_key=document.source_key,
            content_length=len(document.content),
        )

        pieces = self.chunking_service.chunk_document(document.content)
        if not pieces:
            logger.info("document_empty", source_key=document.source_key)
            return 0

        try:
            embeddings = await self.embedding_service.embed_batch(
                [text for text, _ in pieces]
            )
            chunks = [
                KnowledgeChunk(
                    source_key=document.source_key,
                    chunk_index=index,
                    content=text,
                    token_count=token_count,
                    embedding=embedding,
                    metadata={
                        "title": document.title,
                        "url": document.url,
                        "tags": document.tags,
                    },
                )
                for index, ((text, token_count), embedding) in enumerate(
                    zip(pieces, embeddings, strict=True)
                )
            ]
            await self.store.save_chunks(chunks)

        except Exception as e:
            logger.exception(
                "document_ingest_failed",
                source_key=document.source_key,
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "document_ingest_completed",
            source_key=document.source_key,
            chunks=len(chunks),
        )
        return len(chunks)
