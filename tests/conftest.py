"""Shared fixtures: fast configuration, in-memory repository and fake providers."""

from datetime import UTC, datetime

import pytest

from lecturechat.errors import PipelineError
from lecturechat.ingestion.config import IngestionConfig
from lecturechat.ingestion.embedding_service import EmbeddingResult
from lecturechat.ingestion.schemas import (
    ExtractionMethod,
    ExtractionResult,
    SourceKind,
    Transcript,
    TranscriptSegment,
    Video,
)
from lecturechat.ingestion.transcription.base import TranscriptionProvider
from lecturechat.storage.memory import InMemoryRepository


class FakeProvider(TranscriptionProvider):
    """Adapter returning scripted outcomes in order, repeating the last one."""

    def __init__(self, method: ExtractionMethod, outcomes: list):
        self.method = method
        self.outcomes = list(outcomes)
        self.calls = 0

    async def fetch(self, video: Video) -> Transcript:
        raise NotImplementedError

    async def extract(self, video: Video) -> ExtractionResult:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, PipelineError):
            outcome.method = outcome.method or self.method.value
            return ExtractionResult(method=self.method, failure=outcome)
        if isinstance(outcome, Exception):
            raise outcome
        return ExtractionResult(method=self.method, transcript=outcome)


class FakeEmbeddingService:
    """Deterministic embeddings: each text maps to a fixed or keyword vector."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimensions: int = 3):
        self.vectors = vectors or {}
        self.dimensions = dimensions
        self.calls: list[list[str]] = []
        self.error: Exception | None = None

    def _vector(self, text: str) -> list[float]:
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return vector
        return [1.0] + [0.0] * (self.dimensions - 1)

    async def embed_texts(self, texts: list[str]) -> EmbeddingResult:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return EmbeddingResult(
            embeddings=[self._vector(t) for t in texts],
            tokens_used=sum(len(t.split()) for t in texts),
            model="text-embedding-3-small",
        )

    async def embed_query(self, text: str) -> EmbeddingResult:
        return await self.embed_texts([text])


def make_transcript(
    method: ExtractionMethod,
    segment_count: int = 6,
    words_per_segment: int = 10,
    seconds_per_segment: float = 5.0,
) -> Transcript:
    segments = [
        TranscriptSegment(
            text=" ".join(f"word{i}_{w}" for w in range(words_per_segment)),
            start=i * seconds_per_segment,
            end=(i + 1) * seconds_per_segment,
        )
        for i in range(segment_count)
    ]
    return Transcript.from_segments(segments, method=method)


@pytest.fixture
def ingestion_config() -> IngestionConfig:
    """Configuration with small chunks and no backoff delays."""
    return IngestionConfig(
        supadata_api_key="test_supadata_key",
        loom_api_key="test_loom_key",
        vimeo_access_token="test_vimeo_token",
        mux_token_id="test_mux_id",
        mux_token_secret="test_mux_secret",
        transcription_api_key="test_openai_key",
        chunk_target_words=20,
        chunk_overlap_words=10,
        chunk_overlap_segments=1,
        embedding_api_key="test_embedding_key",
        embedding_batch_size=2,
        embedding_requests_per_minute=60_000,
        retry_max_attempts=3,
        retry_base_seconds=0,
        worker_concurrency=2,
        job_max_attempts=2,
        supabase_url="https://test.supabase.co",
        supabase_key="test_key",
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_embeddings() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture
def transcript_factory():
    return make_transcript


@pytest.fixture
def video_factory():
    def make(
        video_id: str = "vid_1",
        tenant_id: str = "tenant_a",
        source_kind: SourceKind = SourceKind.EMBED_YOUTUBE,
        **overrides,
    ) -> Video:
        references = {
            SourceKind.EMBED_YOUTUBE: {"external_id": f"yt_{video_id}"},
            SourceKind.EMBED_LOOM: {"external_id": f"loom_{video_id}"},
            SourceKind.EMBED_VIMEO: {"external_id": "123456"},
            SourceKind.MANAGED_CDN: {
                "asset_id": f"asset_{video_id}",
                "playback_id": f"play_{video_id}",
            },
            SourceKind.UPLOADED_FILE: {"storage_path": f"{tenant_id}/{video_id}.mp4"},
        }[source_kind]
        return Video(
            id=video_id,
            tenant_id=tenant_id,
            title=overrides.pop("title", f"Lecture {video_id}"),
            source_kind=source_kind,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
            updated_at=datetime(2026, 1, 1, tzinfo=UTC),
            **references,
            **overrides,
        )

    return make
