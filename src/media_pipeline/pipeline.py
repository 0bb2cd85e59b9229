"""Channel ingestion run for the media pipeline."""

from src.utils.logging import get_logger

from .audio_downloader import AudioDownloader
from .batch_processor import BatchProcessor
from .config import MediaPipelineConfig, get_config
from .schemas import BatchReport, MediaEntry, MediaStoreStats
from .storage_service import MediaStore
from .transcription_service import TranscriptionService
from .youtube_service import YouTubeService

logger = get_logger(__name__)


class MediaIngestionPipeline:
    """Orchestrates ingestion of a channel's videos into the media store.

    Fetches the channel's items, hands them to the batch processor as one
    staggered batch and waits until every job has completed or failed.
    Collaborators can be injected; otherwise they are built from config.
    """

    def __init__(
        self,
        config: MediaPipelineConfig | None = None,
        *,
        metadata_provider: YouTubeService | None = None,
        store: MediaStore | None = None,
        downloader: AudioDownloader | None = None,
        transcriber: TranscriptionService | None = None,
        processor: BatchProcessor | None = None,
    ):
        """Initialize pipeline with all required services.

        Args:
            config: Configuration object. If None, loads from environment.
            metadata_provider: Channel metadata source.
            store: Media store.
            downloader: Audio acquisition tool.
            transcriber: Chunked transcription service.
            processor: Batch processor. Built from the other services if None.
        """
        self.config = config or get_config()
        self.metadata_provider = metadata_provider or YouTubeService(self.config)
        self.store = store or MediaStore(self.config)
        self.processor = processor or BatchProcessor(
            self.config,
            self.store,
            downloader or AudioDownloader(),
            transcriber or TranscriptionService(self.config),
        )

        logger.info(
            "pipeline_initialized",
            channel_id=self.config.youtube_channel_id,
            max_items=self.config.max_items,
        )

    async def process_channel(
        self,
        channel_id: str | None = None,
        max_items: int | None = None,
        priority: int = 0,
    ) -> BatchReport:
        """Ingest the most recent videos of a channel.

        Args:
            channel_id: Channel to ingest. Defaults to the configured channel.
            max_items: Maximum number of videos. Defaults to config.max_items.
            priority: Priority for every job in the batch.

        Returns:
            BatchReport for the submitted batch.

        Raises:
            MetadataError: If the channel listing fails.
        """
        channel_id = channel_id or self.config.youtube_channel_id
        limit = max_items or self.config.max_items
        logger.info("pipeline_started", channel_id=channel_id, max_items=limit)

        try:
            items = await self.metadata_provider.get_channel_items(channel_id, limit)
        except Exception as e:
            logger.exception("pipeline_failed", channel_id=channel_id, error_type=type(e).__name__)
            raise

        items = items[:limit]
        if not items:
            logger.info("pipeline_completed", channel_id=channel_id, processed=0)
            return BatchReport()

        report = await self.processor.run_batch(items, priority=priority)

        logger.info(
            "pipeline_completed",
            channel_id=channel_id,
            processed=report.processed,
            completed=report.completed,
            failed=report.failed,
        )
        return report

    async def get_stats(self) -> MediaStoreStats:
        return await self.store.get_stats()

    async def search(self, query: str, limit: int = 10) -> list[MediaEntry]:
        """Full-text search over completed transcripts."""
        return await self.store.search_entries(query, limit)
