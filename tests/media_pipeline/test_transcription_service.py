"""Unit tests for the chunked transcription service."""

from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.media_pipeline.config import MediaPipelineConfig
from src.media_pipeline.errors import ErrorKind, TranscriptionError
from src.media_pipeline.schemas import (
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptSegment,
)
from src.media_pipeline.transcription_service import (
    TranscriptionService,
    retry_with_backoff,
    stitch_transcriptions,
)

MB = 1024 * 1024


def _verbose(text: str, duration: float, spans: list[tuple[float, float]]) -> SimpleNamespace:
    return SimpleNamespace(
        text=text,
        language="en",
        duration=duration,
        segments=[SimpleNamespace(start=s, end=e, text=text) for s, e in spans],
    )


@pytest.mark.unit
class TestRetryWithBackoff:
    """Test suite for the shared retry wrapper."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self) -> None:
        """Test transient failures are retried with growing delays."""
        fn = AsyncMock(side_effect=[RuntimeError("socket hang up"), RuntimeError("reset"), "ok"])
        sleep = AsyncMock()

        result = await retry_with_backoff(fn, max_retries=3, base_delay=2.0, sleep=sleep)

        assert result == "ok"
        assert fn.await_count == 3
        delays = [call.args[0] for call in sleep.await_args_list]
        assert 2.0 <= delays[0] <= 3.0
        assert 4.0 <= delays[1] <= 5.0

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self) -> None:
        fn = AsyncMock(side_effect=RuntimeError("Invalid file format"))
        sleep = AsyncMock()

        with pytest.raises(RuntimeError, match="Invalid file format"):
            await retry_with_backoff(fn, max_retries=3, base_delay=1.0, sleep=sleep)

        assert fn.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_error_propagates_after_exhaustion(self) -> None:
        fn = AsyncMock(
            side_effect=[RuntimeError("first"), RuntimeError("second"), RuntimeError("third")]
        )

        with pytest.raises(RuntimeError, match="third"):
            await retry_with_backoff(fn, max_retries=2, base_delay=0.1, sleep=AsyncMock())

        assert fn.await_count == 3


@pytest.mark.unit
class TestStitchTranscriptions:
    """Test suite for stitch_transcriptions."""

    def test_offsets_follow_segment_order(self) -> None:
        """Test results given out of order are stitched by index."""
        results = [
            (
                1,
                TranscriptionResult(
                    text="second",
                    duration_seconds=240.0,
                    confidence=0.8,
                    segments=[TranscriptSegment(start=0.0, end=240.0, text="second")],
                ),
            ),
            (
                0,
                TranscriptionResult(
                    text="first",
                    language="en",
                    duration_seconds=240.0,
                    confidence=1.0,
                    segments=[
                        TranscriptSegment(start=0.0, end=120.0, text="a"),
                        TranscriptSegment(start=120.0, end=240.0, text="b"),
                    ],
                ),
            ),
        ]

        stitched = stitch_transcriptions(results)

        assert stitched.text == "first second"
        assert stitched.duration_seconds == 480.0
        assert stitched.confidence == pytest.approx(0.9)
        assert [s.start for s in stitched.segments] == [0.0, 120.0, 240.0]
        assert stitched.segments[-1].end == 480.0

    def test_timestamps_are_monotonic(self) -> None:
        """Segments each covering [0, D) become one increasing timeline."""
        duration = 240.0
        results = [
            (
                index,
                TranscriptionResult(
                    text=f"part {index}",
                    duration_seconds=duration,
                    segments=[
                        TranscriptSegment(start=0.0, end=100.0, text="x"),
                        TranscriptSegment(start=100.0, end=duration, text="y"),
                    ],
                ),
            )
            for index in range(4)
        ]

        stitched = stitch_transcriptions(results)

        starts = [segment.start for segment in stitched.segments]
        assert starts == sorted(starts)
        for previous, current in zip(stitched.segments, stitched.segments[1:], strict=False):
            assert previous.end <= current.start

    def test_empty_input(self) -> None:
        assert stitch_transcriptions([]).text == ""


@pytest.mark.unit
class TestTranscriptionService:
    """Test suite for TranscriptionService class."""

    @pytest.fixture
    def config(self) -> MediaPipelineConfig:
        """Create test configuration."""
        return MediaPipelineConfig(
            openai_api_key="test_key",
            max_file_size_bytes=25 * MB,
            segment_duration_seconds=240,
            segment_stagger_seconds=1.0,
        )

    @pytest.fixture
    def mock_client(self) -> MagicMock:
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock()
        return client

    @pytest.fixture
    def sleep(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def service(
        self, config: MediaPipelineConfig, mock_client: MagicMock, sleep: AsyncMock
    ) -> TranscriptionService:
        return TranscriptionService(config, client=mock_client, sleep=sleep)

    @pytest.fixture
    def audio_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "episode.mp3"
        path.write_bytes(b"fake audio")
        return path

    def test_service_initialization(self, config: MediaPipelineConfig) -> None:
        """Test the OpenAI client is built from config."""
        with patch("src.media_pipeline.transcription_service.create_openai_client") as mock_create:
            service = TranscriptionService(config)

            mock_create.assert_called_once_with(
                base_url=config.openai_base_url,
                api_key="test_key",
            )
            assert service.client == mock_create.return_value

    def test_farming_preset(self, service: TranscriptionService) -> None:
        options = service.farming_options()

        assert options.language == "en"
        assert options.temperature == 0.1
        assert options.response_format == "verbose_json"
        assert options.max_retries == 4
        assert options.retry_delay_seconds == 3.0
        assert "rotational grazing" in (options.prompt or "")

    @pytest.mark.asyncio
    async def test_farming_preset_uses_configured_retries(
        self, mock_client: MagicMock, audio_file: Path
    ) -> None:
        """Test retry settings from config reach the backoff wrapper."""
        config = MediaPipelineConfig(
            openai_api_key="test_key",
            transcription_max_retries=1,
            transcription_retry_delay_seconds=0.5,
        )
        service = TranscriptionService(config, client=mock_client, sleep=AsyncMock())

        with patch(
            "src.media_pipeline.transcription_service.retry_with_backoff",
            AsyncMock(return_value=TranscriptionResult(text="ok")),
        ) as mock_retry:
            result = await service.transcribe_with_context(audio_file)

        assert result.text == "ok"
        assert mock_retry.await_args.kwargs["max_retries"] == 1
        assert mock_retry.await_args.kwargs["base_delay"] == 0.5

    @pytest.mark.asyncio
    async def test_small_file_transcribed_directly(
        self, service: TranscriptionService, mock_client: MagicMock, audio_file: Path
    ) -> None:
        """Test files under the ceiling skip splitting."""
        mock_client.audio.transcriptions.create.return_value = _verbose(
            " Move the herd daily. ", 30.0, [(0.0, 30.0)]
        )

        result = await service.transcribe(audio_file, TranscriptionOptions(prompt="farm"))

        assert result.text == "Move the herd daily."
        assert result.duration_seconds == 30.0
        assert result.confidence == 1.0
        kwargs = mock_client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["model"] == "whisper-1"
        assert kwargs["file"] == ("episode.mp3", b"fake audio")
        assert kwargs["response_format"] == "verbose_json"
        assert kwargs["prompt"] == "farm"

    @pytest.mark.asyncio
    async def test_prompt_omitted_when_empty(
        self, service: TranscriptionService, mock_client: MagicMock, audio_file: Path
    ) -> None:
        mock_client.audio.transcriptions.create.return_value = "plain text"

        result = await service.transcribe(audio_file)

        assert result.text == "plain text"
        assert "prompt" not in mock_client.audio.transcriptions.create.await_args.kwargs

    @pytest.mark.asyncio
    async def test_large_file_split_and_stitched(
        self,
        service: TranscriptionService,
        mock_client: MagicMock,
        audio_file: Path,
        sleep: AsyncMock,
    ) -> None:
        """Test a 40MB file is split, transcribed per segment and stitched."""
        texts = {
            "segment_000.mp3": "Rotate paddocks every day.",
            "segment_001.mp3": "Water points matter.",
            "segment_002.mp3": "Rest the grass.",
        }
        workdirs: list[Path] = []

        async def fake_split(path: Path, workdir: Path) -> list[Path]:
            workdirs.append(workdir)
            segments = []
            for name in texts:
                segment = workdir / name
                segment.write_bytes(b"seg")
                segments.append(segment)
            return segments

        async def fake_create(**kwargs: Any) -> SimpleNamespace:
            name = kwargs["file"][0]
            return _verbose(texts[name], 240.0, [(0.0, 200.0)])

        service._split_audio = fake_split  # type: ignore[method-assign]
        mock_client.audio.transcriptions.create.side_effect = fake_create

        with patch(
            "src.media_pipeline.transcription_service.os.path.getsize",
            return_value=40 * MB,
        ):
            result = await service.transcribe(audio_file)

        assert mock_client.audio.transcriptions.create.await_count == len(texts) >= 2
        assert result.text == " ".join(texts.values())
        assert len(result.text) == sum(len(t) for t in texts.values()) + len(texts) - 1
        assert [s.start for s in result.segments] == [0.0, 240.0, 480.0]
        assert result.duration_seconds == 720.0
        stagger = sorted(call.args[0] for call in sleep.await_args_list)
        assert stagger == [1.0, 2.0]
        assert not workdirs[0].exists()

    @pytest.mark.asyncio
    async def test_segment_files_removed_on_failure(
        self, service: TranscriptionService, mock_client: MagicMock, audio_file: Path
    ) -> None:
        """Test a permanent segment failure still cleans up the temp dir."""
        workdirs: list[Path] = []

        async def fake_split(path: Path, workdir: Path) -> list[Path]:
            workdirs.append(workdir)
            segments = [workdir / "segment_000.mp3", workdir / "segment_001.mp3"]
            for segment in segments:
                segment.write_bytes(b"seg")
            return segments

        service._split_audio = fake_split  # type: ignore[method-assign]
        mock_client.audio.transcriptions.create.side_effect = RuntimeError("401 Unauthorized")

        with patch(
            "src.media_pipeline.transcription_service.os.path.getsize",
            return_value=40 * MB,
        ):
            with pytest.raises(TranscriptionError) as exc_info:
                await service.transcribe(audio_file)

        assert exc_info.value.kind == ErrorKind.AUTHORIZATION
        assert exc_info.value.retryable is False
        assert not workdirs[0].exists()

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self,
        service: TranscriptionService,
        mock_client: MagicMock,
        audio_file: Path,
        sleep: AsyncMock,
    ) -> None:
        mock_client.audio.transcriptions.create.side_effect = [
            RuntimeError("ECONNRESET"),
            _verbose("ok", 1.0, []),
        ]

        result = await service.transcribe(audio_file, TranscriptionOptions(max_retries=2))

        assert result.text == "ok"
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_transcription_error(
        self, service: TranscriptionService, mock_client: MagicMock, audio_file: Path
    ) -> None:
        mock_client.audio.transcriptions.create.side_effect = RuntimeError("upstream timeout")

        with pytest.raises(TranscriptionError) as exc_info:
            await service.transcribe(audio_file, TranscriptionOptions(max_retries=1))

        assert mock_client.audio.transcriptions.create.await_count == 2
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_split_audio_runs_ffmpeg(
        self, service: TranscriptionService, audio_file: Path, tmp_path: Path
    ) -> None:
        """Test ffmpeg is invoked in segment mode and outputs are ordered."""
        workdir = tmp_path / "segments"
        workdir.mkdir()

        async def fake_exec(*args: str, **kwargs: Any) -> MagicMock:
            for name in ("segment_001.mp3", "segment_000.mp3"):
                (workdir / name).write_bytes(b"seg")
            proc = MagicMock()
            proc.communicate = AsyncMock(return_value=(b"", b""))
            proc.returncode = 0
            return proc

        with patch(
            "src.media_pipeline.transcription_service.asyncio.create_subprocess_exec",
            side_effect=fake_exec,
        ) as mock_exec:
            segments = await service._split_audio(audio_file, workdir)

        args = mock_exec.call_args.args
        assert args[0] == "ffmpeg"
        assert args[args.index("-f") + 1] == "segment"
        assert args[args.index("-segment_time") + 1] == "240"
        assert args[args.index("-c") + 1] == "copy"
        assert [s.name for s in segments] == ["segment_000.mp3", "segment_001.mp3"]

    @pytest.mark.asyncio
    async def test_missing_ffmpeg_is_configuration_error(
        self, service: TranscriptionService, audio_file: Path, tmp_path: Path
    ) -> None:
        with patch(
            "src.media_pipeline.transcription_service.asyncio.create_subprocess_exec",
            side_effect=FileNotFoundError("ffmpeg"),
        ):
            with pytest.raises(TranscriptionError) as exc_info:
                await service._split_audio(audio_file, tmp_path)

        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    @pytest.mark.asyncio
    async def test_ffmpeg_failure(
        self, service: TranscriptionService, audio_file: Path, tmp_path: Path
    ) -> None:
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"", b"Invalid data found"))
        proc.returncode = 1

        with patch(
            "src.media_pipeline.transcription_service.asyncio.create_subprocess_exec",
            AsyncMock(return_value=proc),
        ):
            with pytest.raises(TranscriptionError, match="ffmpeg split failed"):
                await service._split_audio(audio_file, tmp_path)
