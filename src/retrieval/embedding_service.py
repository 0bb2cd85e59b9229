"""Embedding service for generating text embeddings via OpenAI-compatible APIs."""

import asyncio

from openai import AsyncOpenAI

from src.utils.clients import create_openai_client
from src.utils.logging import get_logger

from .config import RetrievalConfig

logger = get_logger(__name__)


class EmbeddingService:
    """Service for generating text embeddings.

    Supports OpenAI, Ollama and OpenRouter through OpenAI-compatible APIs.
    """

    def __init__(self, config: RetrievalConfig, client: AsyncOpenAI | None = None):
        self.config = config
        self.client = client or self._get_client()
        logger.info(
            "embedding_service_initialized",
            provider=config.embedding_provider,
            model=config.embedding_model,
            base_url=config.embedding_base_url,
        )

    def _get_client(self) -> AsyncOpenAI:
        if self.config.embedding_provider == "ollama":
            # Ollama accepts any key
            return create_openai_client(self.config.embedding_base_url, "ollama")
        return create_openai_client(
            self.config.embedding_base_url,
            self.config.embedding_api_key,
        )

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text content to embed.

        Returns:
            Embedding vector as a list of floats.

        Raises:
            Exception: If embedding generation fails.
        """
        try:
            response = await self.client.embeddings.create(
                input=text,
                model=self.config.embedding_model,
            )
            embedding = response.data[0].embedding
            logger.debug(
                "embedding_generated",
                text_length=len(text),
                embedding_dim=len(embedding),
            )
            return embedding

        except Exception as e:
            logger.exception(
                "embedding_failed",
                text_length=len(text),
                error_type=type(e).__name__,
            )
            raise

    async def embed_batch(
        self, texts: list[str], batch_size: int = 10
    ) -> list[list[float]]:
        """Generate embeddings for several texts, ``batch_size`` at a time.

        Returns:
            Embedding vectors in input order.
        """
        embeddings: list[list[float]] = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            batch_embeddings = await asyncio.gather(
                *[self.embed_text(text) for text in batch]
            )
            embeddings.extend(batch_embeddings)
            logger.debug(
                "batch_completed",
                batch_num=i // batch_size + 1,
                count=len(batch),
            )

        logger.info("batch_embedding_completed", total_embeddings=len(embeddings))
        return embeddings
