"""Audio acquisition for media items using yt-dlp."""

import asyncio
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yt_dlp
from yt_dlp.utils import DownloadError

from src.utils.logging import get_logger

from .errors import AcquisitionError, ErrorKind, kind_from_message

logger = get_logger(__name__)


@dataclass
class DownloadedAudio:
    """A downloaded audio file and the obligation to release it.

    ``cleanup()`` must run once the file is no longer needed, on every exit
    path. The object is also an async context manager that does so.

    Attributes:
        path: Local path of the audio file.
        item_key: Key of the media item the audio belongs to.
        title: Title reported by the source.
        duration_seconds: Duration reported by the source, 0 when unknown.
    """

    path: Path
    item_key: str
    title: str = "Unknown Title"
    duration_seconds: int = 0
    _released: bool = field(default=False, repr=False)

    async def cleanup(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await asyncio.to_thread(self.path.unlink, True)
            logger.debug("audio_file_removed", path=str(self.path))
        except OSError as e:
            logger.warning("audio_cleanup_failed", path=str(self.path), error=str(e))

    async def __aenter__(self) -> "DownloadedAudio":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()


class AudioDownloader:
    """Downloads the audio track of a media URL as mp3.

    Files are written to a dedicated temp directory with a unique prefix per
    download so concurrent jobs never pick up each other's files.
    """

    def __init__(self, download_dir: Path | None = None, audio_format: str = "mp3"):
        self.download_dir = download_dir or Path(tempfile.gettempdir()) / "media-audio-downloads"
        self.audio_format = audio_format
        self.download_dir.mkdir(parents=True, exist_ok=True)

    def _options(self, prefix: str) -> dict[str, Any]:
        return {
            "format": "bestaudio/best",
            "outtmpl": str(self.download_dir / f"{prefix}-%(id)s.%(ext)s"),
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": self.audio_format,
                    "preferredquality": "0",
                }
            ],
        }

    def _download_sync(self, url: str, item_key: str) -> DownloadedAudio:
        prefix = uuid.uuid4().hex
        with yt_dlp.YoutubeDL(self._options(prefix)) as ydl:
            info = ydl.extract_info(url, download=True)
            if info is None:
                raise DownloadError(f"yt_dlp returned no info for {url}")

            requested = info.get("requested_downloads") or []
            if requested and requested[0].get("filepath"):
                audio_path = Path(requested[0]["filepath"])
            else:
                base, _ = os.path.splitext(ydl.prepare_filename(info))
                audio_path = Path(f"{base}.{self.audio_format}")

        if not audio_path.exists():
            raise AcquisitionError(
                f"Audio file not found after download for {item_key}: {audio_path}"
            )

        return DownloadedAudio(
            path=audio_path,
            item_key=item_key,
            title=info.get("title") or "Unknown Title",
            duration_seconds=int(info.get("duration") or 0),
        )

    async def download_audio(self, url: str, item_key: str) -> DownloadedAudio:
        """Download the audio for one media item.

        Args:
            url: Media URL.
            item_key: Stable key of the media item, used for logging.

        Returns:
            DownloadedAudio whose cleanup() the caller must invoke.

        Raises:
            AcquisitionError: If the download fails or produces no file.
        """
        logger.info("audio_download_started", item_key=item_key, url=url)

        try:
            audio = await asyncio.to_thread(self._download_sync, url, item_key)
        except AcquisitionError:
            logger.exception("audio_download_failed", item_key=item_key)
            raise
        except Exception as e:
            logger.exception(
                "audio_download_failed",
                item_key=item_key,
                error_type=type(e).__name__,
            )
            kind = kind_from_message(str(e)) or ErrorKind.NETWORK
            raise AcquisitionError(f"Failed to download audio: {e}", kind) from e

        logger.info(
            "audio_download_completed",
            item_key=item_key,
            path=str(audio.path),
            duration_seconds=audio.duration_seconds,
        )
        return audio
