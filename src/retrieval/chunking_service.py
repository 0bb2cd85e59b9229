"""Token-aware chunking of documents for the embedded corpus."""

from typing import Any

from transformers import AutoTokenizer

from src.utils.logging import get_logger

from .config import RetrievalConfig
from .text_chunker import TextChunker

logger = get_logger(__name__)


class ChunkingService:
    """Splits documents into chunks that fit the embedding model.

    Text is first split on sentence boundaries by the TextChunker. Any chunk
    whose token count still exceeds ``max_tokens`` is halved on word
    boundaries until every piece fits.
    """

    def __init__(self, config: RetrievalConfig, tokenizer: Any | None = None):
        """Initialize chunking service with configuration.

        Args:
            config: Configuration object with token limits and embedding model.
            tokenizer: Optional pre-loaded tokenizer.
        """
        self.config = config
        self.text_chunker = TextChunker(config.chunk_size, config.chunk_overlap)
        self.tokenizer = tokenizer or self._get_tokenizer(config.embedding_model)
        logger.info(
            "chunking_service_initialized",
            chunk_size=config.chunk_size,
            max_tokens=config.max_tokens,
            model=config.embedding_model,
        )

    def _get_tokenizer(self, embedding_model: str) -> Any:
        """Get appropriate tokenizer for the embedding model.

        Maps embedding model names to compatible HuggingFace tokenizers.

        Args:
            embedding_model: Name of the embedding model.

        Returns:
            Configured AutoTokenizer instance (untyped due to transformers library).
        """
        tokenizer_map = {
            "text-embedding-3-small": "sentence-transformers/all-MiniLM-L6-v2",
            "text-embedding-3-large": "sentence-transformers/all-MiniLM-L6-v2",
            "nomic-embed-text": "bert-base-uncased",
            "all-MiniLM-L6-v2": "sentence-transformers/all-MiniLM-L6-v2",
        }

        tokenizer_name = tokenizer_map.get(
            embedding_model, "sentence-transformers/all-MiniLM-L6-v2"
        )
        logger.info("loading_tokenizer", tokenizer=tokenizer_name)
        return AutoTokenizer.from_pretrained(tokenizer_name)  # type: ignore

    def count_tokens(self, text: str) -> int:
        return len(self.tokenizer.encode(text))

    def chunk_document(self, text: str) -> list[tuple[str, int]]:
        """Split text into embeddable chunks.

        Args:
            text: Document content.

        Returns:
            (chunk text, token count) pairs in document order.
        """
        pieces: list[tuple[str, int]] = []
        for chunk in self.text_chunker.split(text):
            pieces.extend(self._fit(chunk))

        logger.info(
            "chunking_completed",
            text_length=len(text),
            chunks_created=len(pieces),
        )
        return pieces

    def _fit(self, text: str) -> list[tuple[str, int]]:
        tokens = self.count_tokens(text)
        words = text.split()
        if tokens <= self.config.max_tokens or len(words) < 2:
            return [(text, tokens)]

        middle = len(words) // 2
        logger.debug("chunk_split_for_token_limit", tokens=tokens, words=len(words))
        return self._fit(" ".join(words[:middle])) + self._fit(" ".join(words[middle:]))
