"""Ingestion job orchestrator for lecture videos."""

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lecturechat.chat.schemas import UsageOperation
from lecturechat.errors import (
    IngestionCancelled,
    NotAvailable,
    PipelineError,
    ProviderPermanent,
    ProviderTransient,
    SourceNotAvailable,
    TransientNetwork,
    ValidationFailed,
)
from lecturechat.ledger import PriceTable
from lecturechat.storage.repository import Repository
from lecturechat.utils.logging import get_logger

from .chunking_service import ChunkingService
from .config import IngestionConfig
from .embedding_service import EmbeddingService
from .resolver import TranscriptSourceResolver
from .schemas import (
    ExtractionMethod,
    ExtractionResult,
    IngestionResult,
    PipelineResult,
    Transcript,
    Video,
    VideoStatus,
)
from .transcription.base import TranscriptionProvider

logger = get_logger(__name__)


class IngestionPipeline:
    """Drives one video at a time through the ingestion state machine.

    ``pending → resolving → extracting (⇄ retrying) → chunking → embedding →
    completed``, with ``failed`` reachable from every non-terminal state.
    The cancel flag is checked at each transition. Chunks are kept in memory
    until every vector is available and are then swapped in atomically, so
    search never sees a partial or mixed chunk set.
    """

    def __init__(
        self,
        config: IngestionConfig,
        repository: Repository,
        providers: dict[ExtractionMethod, TranscriptionProvider],
        embedding_service: EmbeddingService,
        resolver: TranscriptSourceResolver | None = None,
        chunking_service: ChunkingService | None = None,
        price_table: PriceTable | None = None,
    ):
        """Initialize pipeline with all required services.

        Args:
            config: Retry budget and chunking settings.
            repository: Persistence for videos, chunks and usage records.
            providers: Transcript adapters keyed by extraction method.
            embedding_service: Client used to vectorize chunks.
            resolver: Extraction plan builder (default: cost-first plans).
            chunking_service: Chunker (default: built from ``config``).
            price_table: Rates used to price paid transcription.
        """
        self.config = config
        self.repository = repository
        self.providers = providers
        self.embedding_service = embedding_service
        self.resolver = resolver or TranscriptSourceResolver()
        self.chunking_service = chunking_service or ChunkingService(config)
        self.price_table = price_table or PriceTable(
            transcription_per_minute=config.transcription_cost_per_minute
        )

        logger.info(
            "pipeline_initialized",
            methods=[m.value for m in providers],
            retry_max_attempts=config.retry_max_attempts,
        )

    async def process_videos(
        self, video_ids: list[str], force_resync: bool = False
    ) -> PipelineResult:
        """Process several videos sequentially and summarize the outcome."""
        result = PipelineResult()
        for video_id in video_ids:
            result.add(await self.process_video(video_id, force_resync=force_resync))

        logger.info(
            "pipeline_completed",
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            chunks_created=result.chunks_created,
            cost_usd=result.cost_usd,
        )
        return result

    async def process_video(
        self, video_id: str, force_resync: bool = False
    ) -> IngestionResult:
        """Run the ingestion job for one video.

        A completed video is left untouched unless ``force_resync`` is set.
        Only one caller can claim a pending video; concurrent callers get a
        ``skipped`` result.

        Returns:
            IngestionResult with status ``completed``, ``failed``,
            ``cancelled`` or ``skipped``.
        """
        video = await self.repository.get_video(video_id)
        if video is None:
            logger.warning("video_not_found", video_id=video_id)
            return IngestionResult(
                video_id=video_id, status="failed", error="Video not found"
            )

        if video.status is VideoStatus.COMPLETED and not force_resync:
            logger.info("video_already_processed", video_id=video_id)
            return IngestionResult(video_id=video_id, status="skipped")

        expected = {VideoStatus.PENDING}
        if force_resync:
            expected |= {VideoStatus.COMPLETED, VideoStatus.FAILED}

        claimed = await self.repository.claim_video(
            video_id, expected, VideoStatus.RESOLVING
        )
        if claimed is None:
            logger.info("video_claimed_elsewhere", video_id=video_id, status=video.status.value)
            return IngestionResult(video_id=video_id, status="skipped")

        logger.info(
            "processing_video",
            video_id=video_id,
            source_kind=claimed.source_kind.value,
            force_resync=force_resync,
        )
        state = _JobState()

        try:
            return await self._run(claimed, state)

        except IngestionCancelled as e:
            await self.repository.update_video_status(
                video_id,
                VideoStatus.FAILED,
                error_message=e.message,
                extraction_method=state.method,
            )
            logger.info("video_processing_cancelled", video_id=video_id)
            return IngestionResult(
                video_id=video_id,
                status="cancelled",
                method=state.method,
                cost_usd=state.cost_usd,
                error=e.message,
            )

        except PipelineError as e:
            reason = _failure_reason(e)
            await self.repository.update_video_status(
                video_id,
                VideoStatus.FAILED,
                error_message=reason,
                extraction_method=state.method,
            )
            logger.error(
                "video_processing_failed",
                video_id=video_id,
                error_type=type(e).__name__,
                method=e.method,
                error=e.message,
            )
            return IngestionResult(
                video_id=video_id,
                status="failed",
                method=state.method,
                cost_usd=state.cost_usd,
                error=reason,
            )

    async def _run(self, video: Video, state: "_JobState") -> IngestionResult:
        await self._check_cancel(video.id)
        plan = self.resolver.plan(video)

        transcript = await self._extract(video, plan, state)
        await self._record_extraction(video, transcript, state)

        await self._transition(video.id, VideoStatus.CHUNKING)
        chunks = self.chunking_service.chunk_transcript(transcript, video)
        if not chunks:
            raise ValidationFailed("Transcript produced no chunks", transcript.method.value)

        await self._transition(video.id, VideoStatus.EMBEDDING)
        embedded = await self.embedding_service.embed_texts([c.text for c in chunks])
        if len(embedded.embeddings) != len(chunks):
            raise ValidationFailed("Embedding count does not match chunk count", "embedding")
        await self.repository.add_usage_record(
            self.price_table.usage_record(
                tenant_id=video.tenant_id,
                operation=UsageOperation.EMBEDDING,
                model=embedded.model,
                input_tokens=embedded.tokens_used,
                video_id=video.id,
            )
        )

        chunks = [
            chunk.model_copy(update={"embedding": vector})
            for chunk, vector in zip(chunks, embedded.embeddings, strict=True)
        ]

        await self._check_cancel(video.id)
        generation = await self.repository.replace_chunks(video.id, chunks)
        await self.repository.mark_completed(video.id)

        logger.info(
            "video_processed",
            video_id=video.id,
            chunks=len(chunks),
            generation=generation,
            method=transcript.method.value,
            cost_usd=state.cost_usd,
        )
        return IngestionResult(
            video_id=video.id,
            status="completed",
            chunks_created=len(chunks),
            method=transcript.method,
            cost_usd=state.cost_usd,
        )

    async def _extract(
        self,
        video: Video,
        plan: list[ExtractionMethod],
        state: "_JobState",
    ) -> Transcript:
        """Walk the plan until one method yields an acceptable transcript.

        ``NotAvailable`` and exhausted transient retries advance the plan;
        permanent failures abort the job.
        """
        last_failure: PipelineError | None = None

        for index, method in enumerate(plan):
            state.method = method
            provider = self.providers.get(method)
            if provider is None:
                logger.warning(
                    "extraction_method_unconfigured", video_id=video.id, method=method.value
                )
                last_failure = NotAvailable("No adapter configured", method.value)
                continue

            await self._transition(video.id, VideoStatus.EXTRACTING, method)
            result = await self._attempt(video, provider)

            if result.transcript is not None:
                if self.resolver.accepts(result.transcript, plan[index + 1 :]):
                    return result.transcript
                last_failure = NotAvailable("Rejected by caption quality policy", method.value)
                continue

            failure = result.failure
            if isinstance(failure, (ProviderPermanent, ValidationFailed)):
                raise failure

            logger.info(
                "extraction_method_failed",
                video_id=video.id,
                method=method.value,
                error_type=type(failure).__name__,
                error=failure.message if failure else None,
            )
            last_failure = failure

        reason = last_failure.message if last_failure else "empty extraction plan"
        raise SourceNotAvailable(
            f"No transcript could be generated ({reason})",
            last_failure.method if last_failure else None,
        )

    async def _attempt(
        self, video: Video, provider: TranscriptionProvider
    ) -> ExtractionResult:
        """One plan entry with bounded exponential-backoff retries."""
        result: ExtractionResult | None = None
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(ProviderTransient),
                stop=stop_after_attempt(self.config.retry_max_attempts),
                wait=wait_exponential(multiplier=self.config.retry_base_seconds, max=60),
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    if number > 1:
                        await self._transition(video.id, VideoStatus.RETRYING, provider.method)
                        logger.warning(
                            "extraction_retry",
                            video_id=video.id,
                            method=provider.method.value,
                            attempt=number,
                        )

                    result = await provider.extract(video)
                    if isinstance(result.failure, ProviderTransient):
                        raise result.failure

        except ProviderTransient as e:
            logger.warning(
                "extraction_retries_exhausted",
                video_id=video.id,
                method=provider.method.value,
                attempts=self.config.retry_max_attempts,
            )
            return ExtractionResult(method=provider.method, failure=e)

        if result is None:
            failure = TransientNetwork("Extraction produced no result", provider.method.value)
            return ExtractionResult(method=provider.method, failure=failure)
        return result

    async def _record_extraction(
        self, video: Video, transcript: Transcript, state: "_JobState"
    ) -> None:
        """Persist the transcript and any spend before downstream steps run."""
        cost = 0.0
        if transcript.method.is_paid:
            minutes = (transcript.duration_seconds or 0.0) / 60
            record = self.price_table.usage_record(
                tenant_id=video.tenant_id,
                operation=UsageOperation.TRANSCRIPTION,
                model=transcript.method.value,
                minutes=minutes,
                video_id=video.id,
            )
            await self.repository.add_usage_record(record)
            cost = record.cost_usd

        state.cost_usd += cost
        await self.repository.record_extraction(
            video.id,
            transcript_text=transcript.text,
            method=transcript.method,
            cost_usd=cost,
            duration_seconds=transcript.duration_seconds,
        )
        logger.info(
            "transcript_extracted",
            video_id=video.id,
            method=transcript.method.value,
            segments=len(transcript.segments),
            cost_usd=cost,
        )

    async def _transition(
        self,
        video_id: str,
        status: VideoStatus,
        method: ExtractionMethod | None = None,
    ) -> None:
        await self._check_cancel(video_id)
        await self.repository.update_video_status(video_id, status, extraction_method=method)

    async def _check_cancel(self, video_id: str) -> None:
        # Deleting the video mid-run also stops the job.
        if await self.repository.is_cancel_requested(video_id):
            raise IngestionCancelled("Ingestion cancelled by request")


class _JobState:
    """Mutable facts about a running job needed when it fails."""

    def __init__(self) -> None:
        self.method: ExtractionMethod | None = None
        self.cost_usd = 0.0


def _failure_reason(error: PipelineError) -> str:
    if error.method:
        return f"{error.message} (method: {error.method})"
    return error.message
