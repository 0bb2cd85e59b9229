"""Configuration module for the media ingestion pipeline."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_FARMING_PROMPT = (
    "This is a video about farming, specifically rotational grazing, livestock "
    "management, and sustainable agriculture. The speaker discusses topics like "
    "pasture management, cattle, sheep, mobile fencing, water systems, and "
    "regenerative farming practices. Please transcribe accurately with focus on "
    "farming terminology."
)

DEFAULT_FARMING_KEYWORDS = [
    "grazing", "pasture", "livestock", "cattle", "sheep", "paddock",
    "rotational", "mob", "forage", "grass", "fence", "water",
    "breeding", "health", "nutrition", "soil", "regenerative",
    "sustainable", "organic", "ranch", "farm", "herd", "flock",
]


class MediaPipelineConfig(BaseModel):
    """Configuration for the media ingestion pipeline.

    Covers the metadata provider, the batch processor's scheduling policy,
    the chunked transcription adapter and the media store. All settings can be
    overridden via environment variables.
    """

    # Supadata (metadata provider) settings
    supadata_api_key: str = Field(
        default_factory=lambda: os.getenv("SUPADATA_API_KEY", "")
    )
    youtube_channel_id: str = Field(
        default_factory=lambda: os.getenv("YOUTUBE_CHANNEL_ID", "")
    )
    max_items: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_MAX_ITEMS", "10"))
    )

    # Scheduler settings
    max_concurrent_jobs: int = Field(
        default_factory=lambda: int(os.getenv("MAX_CONCURRENT_JOBS", "1")), ge=1
    )
    tick_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("SCHEDULER_TICK_SECONDS", "1.0"))
    )
    min_stage_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("MIN_STAGE_DELAY_SECONDS", "5.0"))
    )
    max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("JOB_MAX_ATTEMPTS", "3")), ge=1
    )
    retry_delay_base_seconds: float = Field(
        default_factory=lambda: float(os.getenv("RETRY_DELAY_BASE_SECONDS", "10.0"))
    )
    retry_jitter_seconds: float = Field(
        default_factory=lambda: float(os.getenv("RETRY_JITTER_SECONDS", "1.0"))
    )
    enable_off_peak_mode: bool = Field(
        default_factory=lambda: _env_bool("ENABLE_OFF_PEAK_MODE")
    )
    off_peak_start_hour: int = Field(
        default_factory=lambda: int(os.getenv("OFF_PEAK_START_HOUR", "2")), ge=0, le=23
    )
    off_peak_end_hour: int = Field(
        default_factory=lambda: int(os.getenv("OFF_PEAK_END_HOUR", "6")), ge=0, le=23
    )
    skip_existing: bool = Field(
        default_factory=lambda: _env_bool("SKIP_EXISTING", "true")
    )
    batch_stagger_base_seconds: float = Field(
        default_factory=lambda: float(os.getenv("BATCH_STAGGER_BASE_SECONDS", "2.0"))
    )
    batch_stagger_step_seconds: float = Field(
        default_factory=lambda: float(os.getenv("BATCH_STAGGER_STEP_SECONDS", "1.0"))
    )
    default_eta_processing_seconds: float = 60.0

    # Transcription settings
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str = Field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    )
    transcription_model: str = Field(
        default_factory=lambda: os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
    )
    max_file_size_bytes: int = Field(
        default_factory=lambda: int(
            float(os.getenv("TRANSCRIPTION_MAX_FILE_MB", "25")) * 1024 * 1024
        )
    )
    segment_duration_seconds: int = Field(
        default_factory=lambda: int(os.getenv("TRANSCRIPTION_SEGMENT_SECONDS", "240"))
    )
    segment_stagger_seconds: float = Field(
        default_factory=lambda: float(os.getenv("TRANSCRIPTION_SEGMENT_STAGGER_SECONDS", "1.0"))
    )
    transcription_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("TRANSCRIPTION_MAX_RETRIES", "4")), ge=0
    )
    transcription_retry_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("TRANSCRIPTION_RETRY_DELAY_SECONDS", "3.0")), ge=0
    )
    transcription_language: str = Field(
        default_factory=lambda: os.getenv("TRANSCRIPTION_LANGUAGE", "en")
    )
    transcription_prompt: str = Field(
        default_factory=lambda: os.getenv("TRANSCRIPTION_PROMPT", DEFAULT_FARMING_PROMPT)
    )
    ffmpeg_binary: str = Field(default_factory=lambda: os.getenv("FFMPEG_BINARY", "ffmpeg"))

    # Knowledge metadata
    keyword_vocabulary: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FARMING_KEYWORDS)
    )
    category: str = Field(
        default_factory=lambda: os.getenv("MEDIA_CATEGORY", "regenerative-agriculture")
    )

    # Database settings
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )
    media_table: str = Field(
        default_factory=lambda: os.getenv("MEDIA_TABLE", "media_entries")
    )
    media_search_function: str = Field(
        default_factory=lambda: os.getenv("MEDIA_SEARCH_FUNCTION", "search_media_entries")
    )


def get_config() -> MediaPipelineConfig:
    """Get validated configuration instance.

    Returns:
        MediaPipelineConfig: Validated configuration object with all settings.

    Raises:
        ValidationError: If environment variables hold invalid values.
    """
    return MediaPipelineConfig()
