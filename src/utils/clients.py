"""Client initialization utilities.

Provides functions for initializing the external service clients (Supabase,
OpenAI-compatible APIs) shared by the media pipeline and the retrieval layer.
"""

from openai import AsyncOpenAI
from supabase import Client, create_client


def create_openai_client(base_url: str, api_key: str) -> AsyncOpenAI:
    """Create an AsyncOpenAI client for transcription or embeddings.

    Args:
        base_url: OpenAI-compatible API base URL.
        api_key: API key for the service.

    Returns:
        Configured AsyncOpenAI client.

    Raises:
        ValueError: If the API key is empty.
    """
    if not api_key:
        raise ValueError("An API key is required to create an OpenAI client")

    return AsyncOpenAI(base_url=base_url, api_key=api_key)


def create_supabase_client(url: str, key: str) -> Client:
    """Create a Supabase client for the document store and vector index.

    Args:
        url: Supabase project URL.
        key: Supabase service role key.

    Returns:
        Supabase client.

    Raises:
        ValueError: If the URL or key is missing.

    Examples:
        >>> supabase = create_supabase_client(config.supabase_url, config.supabase_key)
    """
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")

    return create_client(url, key)
