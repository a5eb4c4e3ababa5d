"""Bounded worker pool that runs ingestion jobs from an in-process queue."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from lecturechat.storage.repository import Repository
from lecturechat.utils.logging import get_logger

from .config import IngestionConfig
from .pipeline import IngestionPipeline
from .schemas import IngestionResult, VideoStatus

logger = get_logger(__name__)


@dataclass
class IngestionJob:
    video_id: str
    force_resync: bool = False
    attempts: int = 0


@dataclass
class DeadLetter:
    """A job that kept crashing after its attempt budget."""

    job: IngestionJob
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class IngestionWorkerPool:
    """Run up to ``worker_concurrency`` ingestion jobs at once.

    Delivery is at-least-once: a job that crashes with an unexpected error
    is put back on the queue until ``job_max_attempts`` is reached and then
    moved to ``dead_letters``. Classified pipeline failures are final and
    are recorded on the video by the pipeline itself.

    ``results`` and ``dead_letters`` keep the most recent ``history_limit``
    entries; pass ``None`` to keep all of them (the CLI does).
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        repository: Repository,
        config: IngestionConfig,
        poll_interval_seconds: float = 1.0,
        history_limit: int | None = 1000,
    ):
        self.pipeline = pipeline
        self.repository = repository
        self.config = config
        self.poll_interval_seconds = poll_interval_seconds
        self.queue: asyncio.Queue[IngestionJob] = asyncio.Queue()
        self.dead_letters: deque[DeadLetter] = deque(maxlen=history_limit)
        self.results: deque[IngestionResult] = deque(maxlen=history_limit)
        self.running = False
        self._queued: set[str] = set()
        self._tasks: list[asyncio.Task] = []

    # Collaborator-facing operations

    async def request_ingestion(self, video_id: str, force_resync: bool = False) -> str:
        """Enqueue a video for ingestion.

        Idempotent: completed videos (without ``force_resync``), in-flight
        videos and videos already queued are left alone. Failed videos are
        reset to ``pending`` and queued again.

        Returns:
            One of ``queued``, ``already_queued``, ``in_flight``,
            ``already_completed`` or ``not_found``.
        """
        video = await self.repository.get_video(video_id)
        if video is None:
            logger.warning("ingestion_request_unknown_video", video_id=video_id)
            return "not_found"

        if video.status is VideoStatus.COMPLETED and not force_resync:
            logger.info("ingestion_request_noop", video_id=video_id, status=video.status.value)
            return "already_completed"
        if video.status.is_in_flight:
            logger.info("ingestion_request_noop", video_id=video_id, status=video.status.value)
            return "in_flight"

        if video.status is VideoStatus.FAILED:
            await self.repository.reset_video(video_id)

        return self._enqueue(IngestionJob(video_id=video_id, force_resync=force_resync))

    async def cancel_ingestion(self, video_id: str) -> bool:
        """Flag a queued or running job; it stops at its next state transition."""
        cancelled = await self.repository.request_cancel(video_id)
        logger.info("ingestion_cancel_requested", video_id=video_id, found=cancelled)
        return cancelled

    async def recover_stuck_videos(self) -> list[str]:
        """Reset and requeue videos stuck in an in-flight state for too long."""
        cutoff = datetime.now(UTC) - timedelta(minutes=self.config.stuck_after_minutes)
        stuck = await self.repository.list_stuck_videos(cutoff)

        recovered = []
        for video in stuck:
            await self.repository.reset_video(video.id)
            self._enqueue(IngestionJob(video_id=video.id))
            recovered.append(video.id)

        logger.info("stuck_videos_recovered", count=len(recovered), video_ids=recovered)
        return recovered

    # Pool lifecycle

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(self.run(index), name=f"ingestion-worker-{index}")
            for index in range(self.config.worker_concurrency)
        ]
        logger.info("worker_pool_started", workers=len(self._tasks))

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool_stopped")

    async def join(self) -> None:
        """Wait until every queued job (including requeues) has been handled."""
        await self.queue.join()

    async def run(self, index: int = 0) -> None:
        """Worker loop: one job at a time until the pool stops."""
        while self.running:
            try:
                job = await asyncio.wait_for(
                    self.queue.get(), timeout=self.poll_interval_seconds
                )
            except TimeoutError:
                continue

            try:
                await self.run_job(job)
            finally:
                self.queue.task_done()

    async def run_job(self, job: IngestionJob) -> IngestionResult | None:
        self._queued.discard(job.video_id)
        job.attempts += 1

        try:
            result = await self.pipeline.process_video(
                job.video_id, force_resync=job.force_resync
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                "ingestion_job_crashed",
                video_id=job.video_id,
                attempt=job.attempts,
                error_type=type(e).__name__,
            )
            await self._handle_crash(job, e)
            return None

        self.results.append(result)
        return result

    async def _handle_crash(self, job: IngestionJob, error: Exception) -> None:
        if await self.repository.is_cancel_requested(job.video_id):
            await self.repository.update_video_status(
                job.video_id, VideoStatus.FAILED, error_message="Ingestion cancelled by request"
            )
            return

        if job.attempts < self.config.job_max_attempts:
            await self.repository.reset_video(job.video_id)
            self._enqueue(job)
            return

        reason = f"Job failed after {job.attempts} attempts: {type(error).__name__}"
        self.dead_letters.append(DeadLetter(job=job, error=reason))
        await self.repository.update_video_status(
            job.video_id, VideoStatus.FAILED, error_message=reason
        )
        logger.error("ingestion_job_dead_lettered", video_id=job.video_id, attempts=job.attempts)

    def _enqueue(self, job: IngestionJob) -> str:
        if job.video_id in self._queued:
            return "already_queued"
        self._queued.add(job.video_id)
        self.queue.put_nowait(job)
        logger.info("ingestion_job_queued", video_id=job.video_id, attempt=job.attempts + 1)
        return "queued"
