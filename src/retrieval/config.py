"""Configuration module for hybrid retrieval."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


class RetrievalConfig(BaseModel):
    """Configuration for the embedded corpus and the hybrid retriever.

    The diversity constants are configurable so the balance between the two
    corpora can be tuned without code changes. All settings can be
    overridden via environment variables.
    """

    # Embedding settings
    embedding_provider: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai")
    )
    embedding_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_BASE_URL", "https://api.openai.com/v1"
        )
    )
    embedding_api_key: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_API_KEY", "")
    )
    embedding_model: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL_CHOICE", "text-embedding-3-small"
        )
    )
    max_tokens: int = Field(
        default_factory=lambda: int(os.getenv("MAX_CHUNK_TOKENS", "1000"))
    )

    # Transcript chunking
    chunk_size: int = Field(
        default_factory=lambda: int(os.getenv("RETRIEVAL_CHUNK_SIZE", "500")), gt=0
    )
    chunk_overlap: int = Field(
        default_factory=lambda: int(os.getenv("RETRIEVAL_CHUNK_OVERLAP", "50")), ge=0
    )

    # Hybrid selection
    min_relevance: float = Field(
        default_factory=lambda: float(os.getenv("RETRIEVAL_MIN_RELEVANCE", "0.1"))
    )
    embedded_share: float = Field(
        default_factory=lambda: float(os.getenv("RETRIEVAL_EMBEDDED_SHARE", "0.25")),
        gt=0,
        le=1,
    )
    transcript_candidate_multiplier: int = Field(
        default_factory=lambda: int(os.getenv("RETRIEVAL_TRANSCRIPT_MULTIPLIER", "2")), ge=1
    )
    max_chunks_per_transcript: int = Field(
        default_factory=lambda: int(os.getenv("RETRIEVAL_MAX_CHUNKS_PER_TRANSCRIPT", "2")), ge=1
    )
    per_source_cap_divisor: int = Field(
        default_factory=lambda: int(os.getenv("RETRIEVAL_PER_SOURCE_CAP_DIVISOR", "3")), ge=1
    )

    # Database settings
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )
    knowledge_table: str = Field(
        default_factory=lambda: os.getenv("KNOWLEDGE_TABLE", "knowledge_chunks")
    )
    match_function: str = Field(
        default_factory=lambda: os.getenv("KNOWLEDGE_MATCH_FUNCTION", "match_knowledge_chunks")
    )


def get_retrieval_config() -> RetrievalConfig:
    """Get validated retrieval configuration.

    Raises:
        ValidationError: If environment variables hold invalid values.
    """
    return RetrievalConfig()
