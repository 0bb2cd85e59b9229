"""YouTube metadata provider for media ingestion via the Supadata API."""

from datetime import datetime
from typing import Any

from supadata import Supadata

from src.utils.logging import get_logger

from .config import MediaPipelineConfig
from .errors import ErrorKind, MetadataError, kind_from_message
from .schemas import MediaItem

logger = get_logger(__name__)


def _parse_date(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class YouTubeService:
    """Service for fetching channel media metadata via Supadata.

    Returns an ordered list of MediaItem objects describing the channel's
    uploads. A failure to list the channel is fatal for the ingestion run; a
    failure to enrich a single video leaves a bare item so the video can still
    be downloaded and transcribed.
    """

    def __init__(self, config: MediaPipelineConfig, client: Supadata | None = None):
        """Initialize YouTube service with configuration.

        Args:
            config: Configuration object with Supadata API key and settings.
            client: Optional pre-built Supadata client.
        """
        self.config = config
        self.client = client or Supadata(api_key=config.supadata_api_key)
        logger.info(
            "youtube_service_initialized",
            api_key_present=bool(config.supadata_api_key),
        )

    async def get_channel_items(self, channel_id: str, limit: int) -> list[MediaItem]:
        """Fetch metadata for a channel's most recent uploads.

        Args:
            channel_id: YouTube channel ID, URL, or handle.
            limit: Maximum number of videos to list.

        Returns:
            MediaItem objects in the order the provider lists them.

        Raises:
            MetadataError: If the channel listing fails.
        """
        logger.info("fetching_channel_items", channel_id=channel_id, limit=limit)

        try:
            response = self.client.youtube.channel.videos(
                id=channel_id,
                type="video",  # Exclude shorts and live streams
                limit=limit,
            )
        except Exception as e:
            logger.exception(
                "channel_fetch_failed",
                channel_id=channel_id,
                error_type=type(e).__name__,
            )
            kind = kind_from_message(str(e)) or ErrorKind.NETWORK
            raise MetadataError(f"Channel listing failed: {e}", kind) from e

        items = [self.get_item(video_id) for video_id in response.video_ids]
        logger.info("channel_items_fetched", channel_id=channel_id, count=len(items))
        return items

    def get_item(self, video_id: str) -> MediaItem:
        """Build a MediaItem for one video, enriched with details when available.

        Args:
            video_id: YouTube video ID.

        Returns:
            MediaItem for the video. Only key and URL are set if the detail
            lookup fails.
        """
        url = f"https://youtube.com/watch?v={video_id}"

        try:
            video = self.client.youtube.video(id=video_id)
        except Exception as e:
            logger.warning(
                "video_details_unavailable",
                video_id=video_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return MediaItem(item_key=video_id, url=url)

        channel = getattr(video, "channel", None) or {}
        channel_title = (
            channel.get("name", "") if isinstance(channel, dict) else getattr(channel, "name", "")
        )

        return MediaItem(
            item_key=video_id,
            title=getattr(video, "title", "") or "",
            description=getattr(video, "description", "") or "",
            url=url,
            publish_date=_parse_date(getattr(video, "uploaded_date", None)),
            duration_seconds=getattr(video, "duration", None),
            view_count=getattr(video, "view_count", 0) or 0,
            thumbnail=getattr(video, "thumbnail", "") or "",
            tags=list(getattr(video, "tags", None) or []),
            channel_title=channel_title or "",
        )
