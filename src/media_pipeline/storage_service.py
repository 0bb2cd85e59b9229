"""Media store backed by a Supabase table."""

from collections.abc import Callable
from typing import Any

from supabase import Client

from src.utils.clients import create_supabase_client
from src.utils.logging import get_logger

from .config import MediaPipelineConfig
from .errors import ErrorKind, StorageError, kind_from_message
from .schemas import (
    MediaEntry,
    MediaItem,
    MediaStoreStats,
    ProcessingStatus,
    TranscriptionMeta,
    TranscriptionResult,
    utc_now,
)

logger = get_logger(__name__)

MAX_UPDATE_CONFLICTS = 3

_SEARCHABLE_FIELDS = {"title", "description", "transcript", "channel_title", "tags", "keywords"}


def build_searchable_text(entry: MediaEntry) -> str:
    """Concatenate the fields the full-text index covers."""
    parts = [
        entry.title,
        entry.description,
        entry.transcript,
        entry.channel_title,
        " ".join(entry.tags),
        " ".join(entry.keywords),
    ]
    return " ".join(part for part in parts if part).strip()


def _storage_error(action: str, error: Exception) -> StorageError:
    kind = kind_from_message(str(error)) or ErrorKind.NETWORK
    return StorageError(f"Failed to {action}: {error}", kind)


class MediaStore:
    """Persists MediaEntry documents keyed by media item key.

    Updates use optimistic concurrency on ``version``: a write only lands if
    the stored version is still the one that was read. On conflict the entry
    is re-read and the change re-applied.
    """

    def __init__(self, config: MediaPipelineConfig, client: Client | None = None):
        """Initialize media store with configuration.

        Args:
            config: Configuration object with Supabase credentials.
            client: Optional pre-built Supabase client.
        """
        self.config = config
        self.table = config.media_table
        self.client: Client = client or create_supabase_client(
            config.supabase_url,
            config.supabase_key,
        )
        logger.info("media_store_initialized", table=self.table)

    async def get_entry(self, key: str) -> MediaEntry | None:
        """Fetch one entry by key, or None when it does not exist."""
        try:
            response = (
                self.client.table(self.table)
                .select("*")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.exception("media_entry_fetch_failed", key=key, error_type=type(e).__name__)
            raise _storage_error("fetch media entry", e) from e

        if not response.data:
            return None
        return MediaEntry.model_validate(response.data[0])

    async def save_initial_entry(self, item: MediaItem) -> MediaEntry:
        """Create the entry for a media item, or reset an existing one to pending.

        Args:
            item: Media item metadata from the provider.

        Returns:
            The stored entry.

        Raises:
            StorageError: If the database operation fails.
        """
        metadata = {
            "title": item.title,
            "description": item.description,
            "source_url": item.url,
            "channel_title": item.channel_title,
            "publish_date": item.publish_date,
            "duration_seconds": item.duration_seconds,
            "view_count": item.view_count,
            "thumbnail": item.thumbnail,
            "tags": list(item.tags),
            "category": self.config.category,
        }

        existing = await self.get_entry(item.item_key)
        if existing is not None:
            return await self.update_entry(
                item.item_key,
                {**metadata, "processing_status": ProcessingStatus.PENDING},
            )

        entry = MediaEntry(key=item.item_key, **metadata)
        entry.searchable_text = build_searchable_text(entry)

        try:
            self.client.table(self.table).insert(entry.model_dump(mode="json")).execute()
        except Exception as e:
            logger.exception(
                "media_entry_insert_failed",
                key=item.item_key,
                error_type=type(e).__name__,
            )
            raise _storage_error("insert media entry", e) from e

        logger.info("media_entry_created", key=item.item_key)
        return entry

    async def update_entry(self, key: str, changes: dict[str, Any]) -> MediaEntry:
        """Apply field changes to an entry and bump its version.

        Args:
            key: Media item key.
            changes: Field values to set.

        Returns:
            The updated entry.

        Raises:
            StorageError: If the entry does not exist, the write keeps
                conflicting, or the database operation fails.
        """
        return await self._apply(key, lambda _: changes)

    async def record_failure(self, key: str, message: str) -> MediaEntry:
        """Append a processing error and mark the entry failed."""
        return await self._apply(
            key,
            lambda entry: {
                "processing_errors": [*entry.processing_errors, message],
                "processing_status": ProcessingStatus.FAILED,
            },
        )

    async def save_transcription(
        self,
        key: str,
        result: TranscriptionResult,
        keywords: list[str],
    ) -> MediaEntry:
        """Store a finished transcript and mark the entry completed."""
        now = utc_now()
        return await self.update_entry(
            key,
            {
                "transcript": result.text,
                "transcription_meta": TranscriptionMeta(
                    language=result.language,
                    duration_seconds=result.duration_seconds,
                    confidence=result.confidence,
                    segments=result.segments,
                ),
                "keywords": keywords,
                "processing_status": ProcessingStatus.COMPLETED,
                "transcribed_at": now,
                "processed_at": now,
            },
        )

    async def _apply(
        self,
        key: str,
        mutate: Callable[[MediaEntry], dict[str, Any]],
    ) -> MediaEntry:
        for attempt in range(1, MAX_UPDATE_CONFLICTS + 1):
            current = await self.get_entry(key)
            if current is None:
                raise StorageError(f"Media entry not found: {key}", ErrorKind.INVALID_INPUT)

            changes = mutate(current)
            updated = MediaEntry.model_validate(
                {
                    **current.model_dump(),
                    **changes,
                    "key": current.key,
                    "version": current.version + 1,
                    "created_at": current.created_at,
                    "updated_at": utc_now(),
                }
            )
            if "transcript" in changes:
                updated.transcript_length = len(updated.transcript)
            if _SEARCHABLE_FIELDS & changes.keys():
                updated.searchable_text = build_searchable_text(updated)

            row = updated.model_dump(mode="json", exclude={"key", "created_at"})
            try:
                response = (
                    self.client.table(self.table)
                    .update(row)
                    .eq("key", key)
                    .eq("version", current.version)
                    .execute()
                )
            except Exception as e:
                logger.exception(
                    "media_entry_update_failed",
                    key=key,
                    error_type=type(e).__name__,
                )
                raise _storage_error("update media entry", e) from e

            if response.data:
                logger.debug("media_entry_updated", key=key, version=updated.version)
                return updated

            logger.warning(
                "media_entry_version_conflict",
                key=key,
                expected_version=current.version,
                attempt=attempt,
            )

        raise StorageError(
            f"Media entry {key} kept changing during update", ErrorKind.NETWORK
        )

    async def search_entries(self, query: str, limit: int = 10) -> list[MediaEntry]:
        """Ranked full-text search over completed entries.

        Runs the ``search_media_entries`` database function (see
        ``sql/media_entries.sql``). An entry matches when its searchable text
        contains any query term; results are ordered by text rank.

        Args:
            query: Free-text user query.
            limit: Maximum number of entries to return.

        Returns:
            Matching completed entries, best match first.

        Raises:
            StorageError: If the search fails.
        """
        if not query.strip():
            return []

        try:
            response = self.client.rpc(
                self.config.media_search_function,
                {"search_query": query, "match_count": limit},
            ).execute()
        except Exception as e:
            logger.exception("media_search_failed", error_type=type(e).__name__)
            raise _storage_error("search media entries", e) from e

        entries = [MediaEntry.model_validate(row) for row in response.data or []]
        logger.info("media_search_completed", results=len(entries), limit=limit)
        return entries

    async def list_by_status(
        self, status: ProcessingStatus, limit: int = 100
    ) -> list[MediaEntry]:
        """List entries in one processing status, most recently updated first."""
        try:
            response = (
                self.client.table(self.table)
                .select("*")
                .eq("processing_status", status.value)
                .order("updated_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.exception(
                "media_list_failed",
                status=status.value,
                error_type=type(e).__name__,
            )
            raise _storage_error("list media entries", e) from e

        return [MediaEntry.model_validate(row) for row in response.data or []]

    async def get_stats(self) -> MediaStoreStats:
        """Aggregate counts, transcript volume and mean confidence."""
        try:
            response = (
                self.client.table(self.table)
                .select("processing_status, transcript_length, transcription_meta")
                .execute()
            )
        except Exception as e:
            logger.exception("media_stats_failed", error_type=type(e).__name__)
            raise _storage_error("compute media stats", e) from e

        rows = response.data or []
        counts: dict[str, int] = {}
        total_length = 0
        confidences: list[float] = []
        for row in rows:
            status = row.get("processing_status") or ProcessingStatus.PENDING.value
            counts[status] = counts.get(status, 0) + 1
            total_length += row.get("transcript_length") or 0
            meta = row.get("transcription_meta") or {}
            if status == ProcessingStatus.COMPLETED.value and "confidence" in meta:
                confidences.append(float(meta["confidence"]))

        return MediaStoreStats(
            total_entries=len(rows),
            completed_entries=counts.get(ProcessingStatus.COMPLETED.value, 0),
            failed_entries=counts.get(ProcessingStatus.FAILED.value, 0),
            total_transcript_length=total_length,
            avg_transcription_confidence=(
                sum(confidences) / len(confidences) if confidences else 0.0
            ),
            processing_status_counts=counts,
        )
