"""Pydantic schemas for the ingestion pipeline and vector index."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from lecturechat.errors import PipelineError


class SourceKind(str, Enum):
    """Where a video's bytes (and therefore its transcript) come from."""

    EMBED_YOUTUBE = "embed-youtube"
    EMBED_LOOM = "embed-loom"
    EMBED_VIMEO = "embed-vimeo"
    MANAGED_CDN = "managed-cdn"
    UPLOADED_FILE = "uploaded-file"

    @property
    def is_embed(self) -> bool:
        return self in (
            SourceKind.EMBED_YOUTUBE,
            SourceKind.EMBED_LOOM,
            SourceKind.EMBED_VIMEO,
        )


class VideoStatus(str, Enum):
    """Processing state machine of a video."""

    PENDING = "pending"
    RESOLVING = "resolving"
    EXTRACTING = "extracting"
    RETRYING = "retrying"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoStatus.COMPLETED, VideoStatus.FAILED)

    @property
    def is_in_flight(self) -> bool:
        return self not in (VideoStatus.PENDING, VideoStatus.COMPLETED, VideoStatus.FAILED)


class ExtractionMethod(str, Enum):
    """Transcript extraction methods, one adapter each."""

    YOUTUBE_CAPTIONS = "youtube_captions"
    LOOM_TRANSCRIPT = "loom_transcript"
    VIMEO_TEXT_TRACKS = "vimeo_text_tracks"
    MUX_AUTO_CAPTIONS = "mux_auto_captions"
    WHISPER = "whisper"

    @property
    def is_paid(self) -> bool:
        return self is ExtractionMethod.WHISPER


class Video(BaseModel):
    """A lecture video owned by a tenant.

    Exactly one source reference is populated, and it must match the source
    kind: ``external_id`` for embeds, ``asset_id`` + ``playback_id`` for the
    managed CDN, ``storage_path`` for uploads.
    """

    id: str
    tenant_id: str
    title: str
    source_kind: SourceKind
    external_id: str | None = None
    asset_id: str | None = None
    playback_id: str | None = None
    storage_path: str | None = None
    duration_seconds: float | None = None
    status: VideoStatus = VideoStatus.PENDING
    transcript_text: str | None = None
    extraction_method: ExtractionMethod | None = None
    extraction_cost_usd: float = 0.0
    error_message: str | None = None
    cancel_requested: bool = False
    active_generation: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_synced_at: datetime | None = None

    @model_validator(mode="after")
    def _one_source_reference(self) -> "Video":
        has_embed = bool(self.external_id)
        has_cdn = bool(self.asset_id or self.playback_id)
        has_upload = bool(self.storage_path)

        if has_embed + has_cdn + has_upload != 1:
            raise ValueError("exactly one source reference must be populated")

        if self.source_kind.is_embed and not has_embed:
            raise ValueError(f"{self.source_kind.value} videos need external_id")
        if self.source_kind is SourceKind.MANAGED_CDN and not (
            self.asset_id and self.playback_id
        ):
            raise ValueError("managed-cdn videos need asset_id and playback_id")
        if self.source_kind is SourceKind.UPLOADED_FILE and not has_upload:
            raise ValueError("uploaded-file videos need storage_path")
        return self


class TranscriptSegment(BaseModel):
    """Single timed piece of transcript text, in seconds."""

    text: str
    start: float
    end: float


class Transcript(BaseModel):
    """Full transcript produced by one extraction method."""

    text: str
    segments: list[TranscriptSegment] = Field(default_factory=list)
    language: str | None = None
    duration_seconds: float | None = None
    method: ExtractionMethod

    @classmethod
    def from_segments(
        cls,
        segments: list[TranscriptSegment],
        method: ExtractionMethod,
        language: str | None = None,
        duration_seconds: float | None = None,
    ) -> "Transcript":
        text = " ".join(s.text.strip() for s in segments if s.text.strip())
        if duration_seconds is None and segments:
            duration_seconds = max(s.end for s in segments)
        return cls(
            text=text,
            segments=segments,
            language=language,
            duration_seconds=duration_seconds,
            method=method,
        )


class Chunk(BaseModel):
    """Timestamp-bounded slice of a video transcript.

    ``(video_id, chunk_index)`` is unique within a generation and
    ``start_seconds <= end_seconds`` always holds.
    """

    video_id: str
    tenant_id: str
    chunk_index: int
    text: str
    word_count: int
    start_seconds: float
    end_seconds: float
    embedding: list[float] | None = None
    generation: int = 0
    id: str | None = None

    @model_validator(mode="after")
    def _ordered_range(self) -> "Chunk":
        if self.start_seconds > self.end_seconds:
            raise ValueError("start_seconds must not exceed end_seconds")
        return self


class ChunkMatch(BaseModel):
    """Search hit: a chunk, its cosine similarity and its video's title."""

    chunk: Chunk
    similarity: float
    video_title: str = ""


class ExtractionResult(BaseModel):
    """Outcome of one adapter attempt: either a transcript or a failure."""

    model_config = {"arbitrary_types_allowed": True}

    method: ExtractionMethod
    transcript: Transcript | None = None
    failure: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.transcript is not None


class IngestionResult(BaseModel):
    """What happened to one video during one job run."""

    video_id: str
    status: str  # completed, failed, skipped, cancelled
    chunks_created: int = 0
    method: ExtractionMethod | None = None
    cost_usd: float = 0.0
    error: str | None = None


class PipelineResult(BaseModel):
    """Summary statistics for a batch of ingestion jobs."""

    total_videos: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    chunks_created: int = 0
    cost_usd: float = 0.0
    errors: list[str] = Field(default_factory=list)

    def add(self, result: IngestionResult) -> None:
        self.total_videos += 1
        if result.status == "completed":
            self.processed += 1
            self.chunks_created += result.chunks_created
        elif result.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append(f"{result.video_id}: {result.error or 'Unknown error'}")
        self.cost_usd += result.cost_usd
