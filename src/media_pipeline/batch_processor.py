"""Priority job scheduler that drives media items through acquisition,
transcription and storage.

A single dispatcher task ticks on a fixed interval and admits queued jobs
while concurrency slots are free. Each admitted job runs as its own task; the
dispatcher never awaits job work. All scheduler state is touched only from
the event loop thread.
"""

import asyncio
import contextlib
import itertools
import random
import time
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from datetime import datetime
from typing import Any

from src.utils.logging import get_logger

from .audio_downloader import AudioDownloader, DownloadedAudio
from .config import MediaPipelineConfig
from .errors import PipelineError, ProcessingStage, classify_error
from .keywords import extract_keywords
from .schemas import (
    BatchError,
    BatchItem,
    BatchReport,
    Job,
    JobResult,
    JobStatus,
    MediaItem,
    ProcessingStatus,
    SchedulerStatus,
    utc_now,
)
from .storage_service import MediaStore
from .transcription_service import TranscriptionService

logger = get_logger(__name__)


class BatchProcessor:
    """Schedules and runs media processing jobs.

    Jobs are ordered by priority (higher first), then age, then enqueue
    order. At most ``max_concurrent_jobs`` jobs are processing at once.
    Failed attempts are retried with exponential backoff unless the error is
    permanent.

    Args:
        config: Pipeline configuration with the scheduling policy.
        store: Media store the job state machine writes to.
        downloader: Acquires raw audio for a media item.
        transcriber: Chunked transcription service.
        sleep: Coroutine used for stage padding and retry delays.
        clock: Monotonic clock in seconds.
        now: Wall clock used for off-peak gating.
        rng: Source of jitter in [0, 1).
    """

    def __init__(
        self,
        config: MediaPipelineConfig,
        store: MediaStore,
        downloader: AudioDownloader,
        transcriber: TranscriptionService,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config
        self.store = store
        self.downloader = downloader
        self.transcriber = transcriber
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._rng = rng

        self._jobs: dict[str, Job] = {}
        self._queue: list[str] = []
        self._active: set[str] = set()
        self._started_at: dict[str, float] = {}
        self._durations: list[float] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._dispatcher: asyncio.Task[None] | None = None
        self._sequence = itertools.count()

        logger.info(
            "batch_processor_initialized",
            max_concurrent_jobs=config.max_concurrent_jobs,
            max_attempts=config.max_attempts,
            off_peak=config.enable_off_peak_mode,
        )

    # Queue management

    def enqueue(self, item: MediaItem, priority: int = 0, not_before: float = 0.0) -> str:
        """Add one media item to the queue.

        Args:
            item: Media item to process.
            priority: Higher values are dispatched sooner.
            not_before: Monotonic time before which the job is not dispatched.

        Returns:
            The new job's ID.
        """
        job = Job(
            id=f"job_{item.item_key}_{uuid.uuid4().hex[:8]}",
            subject_id=item.item_key,
            payload=item,
            priority=priority,
            max_attempts=self.config.max_attempts,
            not_before=not_before,
            sequence=next(self._sequence),
        )
        self._jobs[job.id] = job
        self._insert(job.id)
        logger.info(
            "job_enqueued",
            job_id=job.id,
            subject_id=job.subject_id,
            priority=priority,
            queue_length=len(self._queue),
        )
        return job.id

    def enqueue_batch(self, items: Sequence[MediaItem], priority: int = 0) -> list[str]:
        """Add several items, staggering their earliest start times.

        The first item may start immediately; item ``i`` waits
        ``batch_stagger_base_seconds + i * batch_stagger_step_seconds``.
        """
        base = self._clock()
        job_ids = []
        for index, item in enumerate(items):
            not_before = 0.0
            if index > 0:
                not_before = (
                    base
                    + self.config.batch_stagger_base_seconds
                    + index * self.config.batch_stagger_step_seconds
                )
            job_ids.append(self.enqueue(item, priority=priority, not_before=not_before))

        logger.info("batch_enqueued", count=len(job_ids), priority=priority)
        return job_ids

    def _insert(self, job_id: str) -> None:
        self._queue.append(job_id)
        self._queue.sort(key=self._rank)

    def _rank(self, job_id: str) -> tuple[int, datetime, int]:
        job = self._jobs[job_id]
        return (-job.priority, job.created_at, job.sequence)

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        """Return jobs in enqueue order, optionally filtered by status."""
        jobs = sorted(self._jobs.values(), key=lambda job: job.sequence)
        if status is None:
            return jobs
        return [job for job in jobs if job.status == status]

    # Dispatching

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    def start(self) -> None:
        """Start the dispatcher loop. Calling it again while running is a no-op."""
        if self.is_running:
            return
        self._dispatcher = asyncio.get_running_loop().create_task(self._run())
        logger.info("batch_processor_started")

    async def stop(self) -> None:
        """Stop dispatching new jobs. In-flight jobs run to completion."""
        if self._dispatcher is None:
            return
        dispatcher, self._dispatcher = self._dispatcher, None
        dispatcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await dispatcher
        logger.info("batch_processor_stopped", active=len(self._active))

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception as e:
                logger.exception("dispatcher_tick_failed", error_type=type(e).__name__)
            await asyncio.sleep(self.config.tick_interval_seconds)

    def in_processing_window(self) -> bool:
        """Whether off-peak gating currently allows new jobs to start."""
        if not self.config.enable_off_peak_mode:
            return True

        start = self.config.off_peak_start_hour
        end = self.config.off_peak_end_hour
        hour = self._now().hour
        if start == end:
            return True
        if start < end:
            return start <= hour < end
        # Window wraps past midnight, e.g. 22 -> 6
        return hour >= start or hour < end

    def tick(self) -> list[str]:
        """Run one dispatcher pass.

        Returns:
            IDs of the jobs admitted during this pass, in admission order.
        """
        if not self._queue or len(self._active) >= self.config.max_concurrent_jobs:
            return []

        if not self.in_processing_window():
            logger.debug("outside_processing_window", queued=len(self._queue))
            return []

        now = self._clock()
        admitted: list[str] = []
        for job_id in list(self._queue):
            if len(self._active) >= self.config.max_concurrent_jobs:
                break
            job = self._jobs[job_id]
            if job.status != JobStatus.QUEUED or job_id in self._active:
                continue
            if job.not_before > now:
                continue

            self._queue.remove(job_id)
            self._admit(job)
            admitted.append(job_id)

        return admitted

    def _admit(self, job: Job) -> None:
        job.status = JobStatus.PROCESSING
        job.attempts += 1
        job.started_at = utc_now()
        self._active.add(job.id)
        self._started_at[job.id] = self._clock()

        logger.info(
            "job_dispatched",
            job_id=job.id,
            subject_id=job.subject_id,
            attempt=job.attempts,
            active=len(self._active),
        )
        self._track(self._process_job(job))

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Job state machine

    async def _process_job(self, job: Job) -> None:
        item = job.payload
        key = item.item_key
        started = self._started_at.get(job.id, self._clock())
        stage = ProcessingStage.STORAGE
        audio: DownloadedAudio | None = None

        try:
            if self.config.skip_existing:
                existing = await self.store.get_entry(key)
                if existing is not None and existing.processing_status == ProcessingStatus.COMPLETED:
                    logger.info("job_skipped_existing", job_id=job.id, subject_id=key)
                    self._complete(job, len(existing.transcript), 0)
                    return

            await self.store.save_initial_entry(item)
            await self.store.update_entry(
                key, {"processing_status": ProcessingStatus.DOWNLOADING}
            )

            stage = ProcessingStage.DOWNLOAD
            audio = await self.downloader.download_audio(item.url, key)

            remaining = self.config.min_stage_delay_seconds - (self._clock() - started)
            if remaining > 0:
                await self._sleep(remaining)

            stage = ProcessingStage.STORAGE
            await self.store.update_entry(
                key,
                {
                    "processing_status": ProcessingStatus.TRANSCRIBING,
                    "audio_downloaded_at": utc_now(),
                },
            )

            stage = ProcessingStage.TRANSCRIPTION
            result = await self.transcriber.transcribe_with_context(audio.path)

            stage = ProcessingStage.STORAGE
            keywords = extract_keywords(result.text, self.config.keyword_vocabulary)
            await self.store.save_transcription(key, result, keywords)

            duration_ms = int((self._clock() - started) * 1000)
            self._complete(job, len(result.text), duration_ms)

        except Exception as e:
            await self._handle_job_error(job, e, stage)

        finally:
            if audio is not None:
                await audio.cleanup()
            self._active.discard(job.id)
            self._started_at.pop(job.id, None)

    def _complete(self, job: Job, output_size: int, duration_ms: int) -> None:
        job.status = JobStatus.COMPLETED
        job.completed_at = utc_now()
        job.result = JobResult(output_size=output_size, processing_duration_ms=duration_ms)
        if duration_ms > 0:
            self._durations.append(duration_ms / 1000)

        logger.info(
            "job_completed",
            job_id=job.id,
            subject_id=job.subject_id,
            attempts=job.attempts,
            output_size=output_size,
            processing_duration_ms=duration_ms,
        )

    async def _handle_job_error(
        self, job: Job, error: Exception, stage: ProcessingStage
    ) -> None:
        kind = classify_error(error)
        job.last_error = str(error)
        job.error_kind = kind
        if isinstance(error, PipelineError) and error.stage is not None:
            job.error_stage = error.stage
        else:
            job.error_stage = stage

        try:
            await self.store.record_failure(
                job.subject_id, f"Attempt {job.attempts}: {error}"
            )
        except Exception as store_error:
            logger.warning(
                "failure_record_failed",
                job_id=job.id,
                subject_id=job.subject_id,
                error_type=type(store_error).__name__,
                error=str(store_error),
            )

        if not kind.retryable:
            self._fail(job, reason="permanent")
            return

        if job.attempts >= job.max_attempts:
            self._fail(job, reason="attempts_exhausted")
            return

        delay = (
            self.config.retry_delay_base_seconds * 2 ** (job.attempts - 1)
            + self._rng() * self.config.retry_jitter_seconds
        )
        job.status = JobStatus.RETRYING
        logger.warning(
            "job_retry_scheduled",
            job_id=job.id,
            subject_id=job.subject_id,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            delay_seconds=round(delay, 2),
            error_kind=kind.value,
            error=job.last_error,
        )
        self._track(self._requeue_after(job, delay))

    def _fail(self, job: Job, reason: str) -> None:
        job.status = JobStatus.FAILED
        job.completed_at = utc_now()
        logger.error(
            "job_failed",
            job_id=job.id,
            subject_id=job.subject_id,
            reason=reason,
            attempts=job.attempts,
            error_kind=job.error_kind.value if job.error_kind else None,
            error_stage=job.error_stage.value if job.error_stage else None,
            error=job.last_error,
        )

    async def _requeue_after(self, job: Job, delay: float) -> None:
        await self._sleep(delay)
        if job.status != JobStatus.RETRYING:
            return
        job.status = JobStatus.QUEUED
        self._insert(job.id)
        logger.info("job_requeued", job_id=job.id, attempt=job.attempts)

    # Reporting

    def status(self) -> SchedulerStatus:
        """Snapshot of queue depth, active jobs and the next-start estimate."""
        by_status = Counter(job.status.value for job in self._jobs.values())
        return SchedulerStatus(
            total_jobs=len(self._jobs),
            queued=len(self._queue),
            active=len(self._active),
            by_status=dict(by_status),
            is_running=self.is_running,
            eta_for_next_job_seconds=self._eta_for_next_job(),
        )

    def _eta_for_next_job(self) -> float | None:
        if not self._queue:
            return None
        if len(self._active) < self.config.max_concurrent_jobs:
            return 0.0

        if self._durations:
            average = sum(self._durations) / len(self._durations)
        else:
            average = self.config.default_eta_processing_seconds

        now = self._clock()
        elapsed = max(
            (now - started for started in self._started_at.values()),
            default=0.0,
        )
        return max(0.0, average + self.config.min_stage_delay_seconds - elapsed)

    async def wait_for_jobs(self, job_ids: Sequence[str]) -> list[Job]:
        """Wait until every listed job is completed or failed."""
        jobs = [self._jobs[job_id] for job_id in job_ids]
        while not all(job.status.is_terminal for job in jobs):
            await asyncio.sleep(self.config.tick_interval_seconds)
        return jobs

    async def run_batch(self, items: Sequence[MediaItem], priority: int = 0) -> BatchReport:
        """Enqueue items, process them to a terminal state and summarize.

        Starts the dispatcher if it is not already running and stops it again
        afterwards in that case.
        """
        job_ids = self.enqueue_batch(items, priority=priority)
        started_here = not self.is_running
        self.start()
        try:
            jobs = await self.wait_for_jobs(job_ids)
        finally:
            if started_here:
                await self.stop()

        report = BatchReport(job_ids=list(job_ids), processed=len(jobs))
        for job in jobs:
            if job.status == JobStatus.COMPLETED:
                report.completed += 1
                report.completed_items.append(
                    BatchItem(
                        subject_key=job.subject_id,
                        title=job.payload.title,
                        transcript_length=job.result.output_size if job.result else 0,
                    )
                )
            else:
                report.failed += 1
                report.errors.append(
                    BatchError(
                        subject_key=job.subject_id,
                        stage=job.error_stage or ProcessingStage.INGESTION,
                        message=job.last_error or "unknown error",
                    )
                )

        logger.info(
            "batch_completed",
            processed=report.processed,
            completed=report.completed,
            failed=report.failed,
        )
        return report
