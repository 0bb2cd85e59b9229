"""Chunked transcription of long audio with an OpenAI-compatible Whisper API.

The transcription endpoint rejects uploads above a fixed size ceiling. Files
under the ceiling are sent directly; larger files are split with ffmpeg into
fixed-duration segments that are transcribed concurrently and stitched back
onto one timeline.
"""

import asyncio
import os
import shutil
import tempfile
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from src.utils.clients import create_openai_client
from src.utils.logging import get_logger

from .config import MediaPipelineConfig
from .errors import ErrorKind, TranscriptionError, classify_error, is_retryable
from .schemas import TranscriptionOptions, TranscriptionResult, TranscriptSegment

logger = get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "transcription_retry_scheduled",
        attempt=retry_state.attempt_number,
        delay_seconds=round(delay, 2),
        error_type=type(error).__name__ if error else None,
        error=str(error) if error else None,
    )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    base_delay: float,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run an async operation with exponential backoff and jitter.

    Makes up to ``max_retries + 1`` attempts. Between attempts it sleeps
    ``base_delay * 2**attempt`` plus up to one second of jitter. Errors that
    classify as permanent are raised on the first occurrence; after the last
    attempt the final error propagates unchanged.

    Args:
        fn: Zero-argument coroutine function to call.
        max_retries: Number of retries after the first attempt.
        base_delay: Base delay in seconds.
        sleep: Coroutine used to wait between attempts.

    Returns:
        The value returned by ``fn``.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2) + wait_random(0, 1),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(fn)


def stitch_transcriptions(
    results: Sequence[tuple[int, TranscriptionResult]],
) -> TranscriptionResult:
    """Combine per-segment transcriptions into one result.

    Segments are ordered by index. Texts are joined with single spaces,
    durations summed and confidences averaged. Every timed span is shifted by
    the total duration of the segments before it, so timestamps increase
    across the stitched result.

    Args:
        results: (segment index, result) pairs in any order.

    Returns:
        Stitched TranscriptionResult. The language is the first segment's.
    """
    if not results:
        return TranscriptionResult(text="")

    ordered = [result for _, result in sorted(results, key=lambda pair: pair[0])]

    offset = 0.0
    segments: list[TranscriptSegment] = []
    for result in ordered:
        for segment in result.segments:
            segments.append(
                TranscriptSegment(
                    start=segment.start + offset,
                    end=segment.end + offset,
                    text=segment.text,
                )
            )
        offset += result.duration_seconds

    return TranscriptionResult(
        text=" ".join(result.text for result in ordered),
        language=ordered[0].language,
        duration_seconds=offset,
        confidence=sum(result.confidence for result in ordered) / len(ordered),
        segments=segments,
    )


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class TranscriptionService:
    """Transcribes audio files of any length via the Whisper API.

    Attributes:
        config: Pipeline configuration with API credentials and size limits.
        client: AsyncOpenAI client used for transcription requests.
    """

    def __init__(
        self,
        config: MediaPipelineConfig,
        client: AsyncOpenAI | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.config = config
        self.client = client or create_openai_client(
            base_url=config.openai_base_url,
            api_key=config.openai_api_key,
        )
        self._sleep = sleep
        logger.info(
            "transcription_service_initialized",
            model=config.transcription_model,
            max_file_size_bytes=config.max_file_size_bytes,
            segment_duration_seconds=config.segment_duration_seconds,
        )

    def farming_options(self) -> TranscriptionOptions:
        """Transcription preset tuned for agricultural content."""
        return TranscriptionOptions(
            language=self.config.transcription_language,
            prompt=self.config.transcription_prompt,
            temperature=0.1,
            response_format="verbose_json",
            max_retries=self.config.transcription_max_retries,
            retry_delay_seconds=self.config.transcription_retry_delay_seconds,
        )

    async def transcribe_with_context(self, media_path: Path | str) -> TranscriptionResult:
        """Transcribe using the farming-context preset."""
        return await self.transcribe(media_path, self.farming_options())

    async def transcribe(
        self,
        media_path: Path | str,
        options: TranscriptionOptions | None = None,
    ) -> TranscriptionResult:
        """Transcribe an audio file, splitting it first when it is too large.

        Args:
            media_path: Path to the audio file.
            options: Transcription options. Defaults to TranscriptionOptions().

        Returns:
            TranscriptionResult covering the whole file.

        Raises:
            TranscriptionError: If transcription fails. The error's kind decides
                whether the caller should retry.
        """
        path = Path(media_path)
        options = options or TranscriptionOptions()

        try:
            size = os.path.getsize(path)
            if size <= self.config.max_file_size_bytes:
                logger.info("transcribing_directly", path=str(path), size_bytes=size)
                return await self._with_retry(path, options)

            logger.info(
                "transcribing_in_segments",
                path=str(path),
                size_bytes=size,
                max_file_size_bytes=self.config.max_file_size_bytes,
            )
            return await self._transcribe_chunked(path, options)

        except TranscriptionError:
            raise
        except Exception as e:
            logger.exception(
                "transcription_failed",
                path=str(path),
                error_type=type(e).__name__,
            )
            raise TranscriptionError(
                f"Failed to transcribe audio: {e}", classify_error(e)
            ) from e

    async def _with_retry(
        self, path: Path, options: TranscriptionOptions
    ) -> TranscriptionResult:
        return await retry_with_backoff(
            lambda: self._transcribe_direct(path, options),
            max_retries=options.max_retries,
            base_delay=options.retry_delay_seconds,
            sleep=self._sleep,
        )

    async def _transcribe_chunked(
        self, path: Path, options: TranscriptionOptions
    ) -> TranscriptionResult:
        workdir = Path(tempfile.mkdtemp(prefix="transcription-segments-"))
        try:
            segment_paths = await self._split_audio(path, workdir)
            logger.info("audio_split", path=str(path), segments=len(segment_paths))

            async def run_segment(index: int, segment_path: Path) -> tuple[int, TranscriptionResult]:
                if index:
                    await self._sleep(index * self.config.segment_stagger_seconds)
                result = await self._with_retry(segment_path, options)
                logger.debug(
                    "segment_transcribed",
                    index=index,
                    text_length=len(result.text),
                )
                return index, result

            tasks = [
                asyncio.create_task(run_segment(index, segment_path))
                for index, segment_path in enumerate(segment_paths)
            ]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            stitched = stitch_transcriptions(results)
            logger.info(
                "segments_stitched",
                segments=len(results),
                text_length=len(stitched.text),
                duration_seconds=stitched.duration_seconds,
            )
            return stitched
        finally:
            self._remove_workdir(workdir)

    async def _split_audio(self, path: Path, workdir: Path) -> list[Path]:
        """Split audio into fixed-duration segments with ffmpeg stream copy.

        Returns:
            Segment files in playback order.

        Raises:
            TranscriptionError: If ffmpeg is missing or exits with an error.
        """
        suffix = path.suffix or ".mp3"
        pattern = workdir / f"segment_%03d{suffix}"
        try:
            proc = await asyncio.create_subprocess_exec(
                self.config.ffmpeg_binary,
                "-hide_banner",
                "-loglevel", "error",
                "-i", str(path),
                "-f", "segment",
                "-segment_time", str(self.config.segment_duration_seconds),
                "-c", "copy",
                "-reset_timestamps", "1",
                str(pattern),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscriptionError(
                f"ffmpeg binary not found: {self.config.ffmpeg_binary}",
                ErrorKind.CONFIGURATION,
            ) from e

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise TranscriptionError(
                f"ffmpeg split failed: {stderr.decode(errors='replace')[:500]}",
                ErrorKind.UNKNOWN,
            )

        segments = sorted(workdir.glob(f"segment_*{suffix}"))
        if not segments:
            raise TranscriptionError("ffmpeg produced no segments", ErrorKind.UNKNOWN)
        return segments

    def _remove_workdir(self, workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
            logger.debug("segment_files_removed", workdir=str(workdir))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("segment_cleanup_failed", workdir=str(workdir), error=str(e))

    async def _transcribe_direct(
        self, path: Path, options: TranscriptionOptions
    ) -> TranscriptionResult:
        audio_bytes = await asyncio.to_thread(path.read_bytes)

        request: dict[str, Any] = {
            "model": self.config.transcription_model,
            "file": (path.name, audio_bytes),
            "language": options.language,
            "temperature": options.temperature,
            "response_format": options.response_format,
        }
        if options.prompt:
            request["prompt"] = options.prompt

        response = await self.client.audio.transcriptions.create(**request)

        if isinstance(response, str):
            return TranscriptionResult(text=response.strip(), language=options.language)

        segments = [
            TranscriptSegment(
                start=float(_field(segment, "start", 0.0)),
                end=float(_field(segment, "end", 0.0)),
                text=str(_field(segment, "text", "")).strip(),
            )
            for segment in _field(response, "segments", None) or []
        ]
        return TranscriptionResult(
            text=str(_field(response, "text", "")).strip(),
            language=_field(response, "language", None) or options.language,
            duration_seconds=float(_field(response, "duration", 0.0) or 0.0),
            # The API reports no confidence score
            confidence=1.0,
            segments=segments,
        )
