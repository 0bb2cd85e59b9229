"""Pydantic schemas for the media ingestion pipeline."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from .errors import ErrorKind, ProcessingStage


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle states of a scheduled job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ProcessingStatus(str, Enum):
    """Processing state persisted on a MediaEntry."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"


class MediaItem(BaseModel):
    """Metadata for one ingestible media item.

    This is what the metadata provider returns and what a job carries as its
    payload through the acquire, transcribe and store stages.
    """

    item_key: str
    title: str = ""
    description: str = ""
    url: str
    publish_date: datetime | None = None
    duration_seconds: int | None = None
    view_count: int = 0
    thumbnail: str = ""
    tags: list[str] = Field(default_factory=list)
    channel_title: str = ""


class TranscriptSegment(BaseModel):
    """Single timed span of a transcription, in seconds."""

    start: float
    end: float
    text: str


class TranscriptionResult(BaseModel):
    """Result of transcribing one audio file.

    For chunked transcriptions the segment timestamps are already shifted onto
    one continuous timeline.
    """

    text: str
    language: str = "en"
    duration_seconds: float = 0.0
    confidence: float = 1.0
    segments: list[TranscriptSegment] = Field(default_factory=list)


class TranscriptionOptions(BaseModel):
    """Options passed to the transcription service for one call."""

    language: str = "en"
    prompt: str | None = None
    temperature: float = 0.1
    response_format: str = "verbose_json"
    max_retries: int = 3
    retry_delay_seconds: float = 2.0


class TranscriptionMeta(BaseModel):
    """Transcription metadata stored alongside a transcript."""

    language: str
    duration_seconds: float
    confidence: float
    segments: list[TranscriptSegment] = Field(default_factory=list)


class MediaEntry(BaseModel):
    """Durable record of one media item in the media store.

    The batch processor owns an entry while a job drives it through
    pending, downloading, transcribing and completed/failed; afterwards the
    store owns it. Every update increments ``version``.
    """

    key: str
    title: str = ""
    description: str = ""
    source_url: str = ""
    channel_title: str = ""
    publish_date: datetime | None = None
    duration_seconds: int | None = None
    view_count: int = 0
    thumbnail: str = ""
    tags: list[str] = Field(default_factory=list)

    transcript: str = ""
    transcript_length: int = 0
    transcription_meta: TranscriptionMeta | None = None
    keywords: list[str] = Field(default_factory=list)
    searchable_text: str = ""

    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_errors: list[str] = Field(default_factory=list)
    audio_downloaded_at: datetime | None = None
    transcribed_at: datetime | None = None
    processed_at: datetime | None = None

    source: str = "youtube"
    category: str = "general"

    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MediaStoreStats(BaseModel):
    """Aggregate statistics over the media store."""

    total_entries: int
    completed_entries: int
    failed_entries: int
    total_transcript_length: int
    avg_transcription_confidence: float
    processing_status_counts: dict[str, int] = Field(default_factory=dict)


class JobResult(BaseModel):
    """Outcome of a completed job."""

    output_size: int
    processing_duration_ms: int


class Job(BaseModel):
    """One scheduled unit of acquire, transcribe and store work.

    ``attempts`` increments only when a processing attempt starts, so it
    never exceeds ``max_attempts``.
    """

    id: str
    subject_id: str
    payload: MediaItem
    status: JobStatus = JobStatus.QUEUED
    priority: int = 0
    attempts: int = 0
    max_attempts: int = 3
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None
    error_kind: ErrorKind | None = None
    error_stage: ProcessingStage | None = None
    result: JobResult | None = None
    not_before: float = 0.0  # monotonic seconds
    sequence: int = 0


class BatchError(BaseModel):
    """A single failed item in a batch report."""

    subject_key: str
    stage: ProcessingStage
    message: str


class BatchItem(BaseModel):
    """A single completed item in a batch report."""

    subject_key: str
    title: str = ""
    transcript_length: int = 0


class BatchReport(BaseModel):
    """Summary of a batch run.

    Every submitted job is counted once: processed == completed + failed.
    """

    job_ids: list[str] = Field(default_factory=list)
    processed: int = 0
    completed: int = 0
    failed: int = 0
    completed_items: list[BatchItem] = Field(default_factory=list)
    errors: list[BatchError] = Field(default_factory=list)


class SchedulerStatus(BaseModel):
    """Point-in-time view of the batch processor."""

    total_jobs: int
    queued: int
    active: int
    by_status: dict[str, int]
    is_running: bool
    eta_for_next_job_seconds: float | None = None
