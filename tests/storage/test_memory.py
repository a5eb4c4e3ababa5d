"""Unit tests for the in-memory repository and the vector index."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from lecturechat.chat.schemas import ChatMessage, ChatSession, MessageRole
from lecturechat.errors import ValidationFailed
from lecturechat.ingestion.schemas import (
    Chunk,
    ChunkMatch,
    ExtractionMethod,
    SourceKind,
    VideoStatus,
)
from lecturechat.storage.memory import InMemoryRepository
from lecturechat.storage.vector_index import VectorIndex, rank_matches


def make_chunk(
    video_id: str, index: int, embedding: list[float], tenant_id: str = "tenant_a"
) -> Chunk:
    return Chunk(
        video_id=video_id,
        tenant_id=tenant_id,
        chunk_index=index,
        text=f"{video_id} chunk {index}",
        word_count=3,
        start_seconds=index * 30.0,
        end_seconds=(index + 1) * 30.0,
        embedding=embedding,
    )


@pytest.mark.unit
class TestInMemoryRepository:
    """Test suite for InMemoryRepository."""

    @pytest.mark.asyncio
    async def test_claim_is_compare_and_set(
        self, repository: InMemoryRepository, video_factory
    ) -> None:
        await repository.insert_video(video_factory())

        first = await repository.claim_video("vid_1", {VideoStatus.PENDING}, VideoStatus.RESOLVING)
        second = await repository.claim_video("vid_1", {VideoStatus.PENDING}, VideoStatus.RESOLVING)

        assert first is not None and first.status is VideoStatus.RESOLVING
        assert second is None

    @pytest.mark.asyncio
    async def test_record_extraction_accumulates_cost(
        self, repository: InMemoryRepository, video_factory
    ) -> None:
        await repository.insert_video(video_factory(source_kind=SourceKind.UPLOADED_FILE))

        for _ in range(2):
            await repository.record_extraction(
                "vid_1", "text", ExtractionMethod.WHISPER, 0.01, duration_seconds=100.0
            )

        video = repository.videos["vid_1"]
        assert video.extraction_cost_usd == pytest.approx(0.02)
        assert video.duration_seconds == 100.0

    @pytest.mark.asyncio
    async def test_replace_chunks_flips_generation(
        self, repository: InMemoryRepository, video_factory
    ) -> None:
        await repository.insert_video(video_factory())

        first = await repository.replace_chunks("vid_1", [make_chunk("vid_1", 0, [1.0, 0.0])])
        second = await repository.replace_chunks(
            "vid_1", [make_chunk("vid_1", 1, [1.0, 0.0]), make_chunk("vid_1", 0, [1.0, 0.0])]
        )

        assert (first, second) == (1, 2)
        chunks = await repository.list_chunks("vid_1")
        assert [c.chunk_index for c in chunks] == [0, 1]
        assert [c.id for c in chunks] == ["vid_1:2:0", "vid_1:2:1"]
        assert repository.videos["vid_1"].active_generation == 2

    @pytest.mark.asyncio
    async def test_replace_chunks_unknown_video(self, repository: InMemoryRepository) -> None:
        with pytest.raises(KeyError):
            await repository.replace_chunks("missing", [])

    @pytest.mark.asyncio
    async def test_latest_session_skips_archived(self, repository: InMemoryRepository) -> None:
        now = datetime(2026, 3, 1, tzinfo=UTC)
        older = ChatSession(id="s1", tenant_id="t", requester_id="u", updated_at=now)
        newer = ChatSession(
            id="s2", tenant_id="t", requester_id="u", updated_at=now + timedelta(minutes=5)
        )
        await repository.create_session(older)
        await repository.create_session(newer)
        await repository.archive_session("s2")

        latest = await repository.latest_session("t", "u")

        assert latest.id == "s1"
        assert len(await repository.list_sessions("t", include_archived=True)) == 2

    @pytest.mark.asyncio
    async def test_list_messages_limit_keeps_most_recent(
        self, repository: InMemoryRepository
    ) -> None:
        for i in range(5):
            await repository.add_message(
                ChatMessage(
                    id=str(i), session_id="s", tenant_id="t", role=MessageRole.USER, content=f"m{i}"
                )
            )

        recent = await repository.list_messages("s", limit=2)

        assert [m.content for m in recent] == ["m3", "m4"]
        assert await repository.list_messages("s", limit=0) == []
        assert await repository.count_messages("s") == 5

    @pytest.mark.asyncio
    async def test_delete_video_cascades_to_chunks(
        self, repository: InMemoryRepository, video_factory
    ) -> None:
        await repository.insert_video(video_factory())
        await repository.insert_video(video_factory("vid_2"))
        await repository.replace_chunks("vid_1", [make_chunk("vid_1", 0, [1.0, 0.0])])
        await repository.replace_chunks("vid_2", [make_chunk("vid_2", 0, [1.0, 0.0])])

        await repository.delete_video("vid_1")

        assert await repository.get_video("vid_1") is None
        assert await repository.list_chunks("vid_1") == []
        assert all(video_id != "vid_1" for video_id, _ in repository.chunks)
        matches = await repository.search_chunks("tenant_a", [1.0, 0.0], 10, 0.0)
        assert [m.chunk.video_id for m in matches] == ["vid_2"]

    @pytest.mark.asyncio
    async def test_deleted_video_counts_as_cancelled(
        self, repository: InMemoryRepository, video_factory
    ) -> None:
        await repository.insert_video(video_factory())
        assert await repository.is_cancel_requested("vid_1") is False

        await repository.delete_video("vid_1")

        assert await repository.is_cancel_requested("vid_1") is True


@pytest.mark.unit
class TestVectorIndex:
    """Test suite for VectorIndex search."""

    @pytest_asyncio.fixture
    async def index(self, repository: InMemoryRepository, video_factory) -> VectorIndex:
        await repository.insert_video(video_factory("vid_a"))
        await repository.insert_video(video_factory("vid_b"))
        await repository.insert_video(video_factory("vid_other", tenant_id="tenant_b"))

        await repository.replace_chunks(
            "vid_a",
            [
                make_chunk("vid_a", 0, [0.9, 0.4358899]),
                make_chunk("vid_a", 1, [0.0, 1.0]),
            ],
        )
        await repository.replace_chunks(
            "vid_b",
            [
                make_chunk("vid_b", 0, [0.8, 0.6]),
                make_chunk("vid_b", 1, [1.0, 0.0]),
            ],
        )
        await repository.replace_chunks(
            "vid_other", [make_chunk("vid_other", 0, [1.0, 0.0], tenant_id="tenant_b")]
        )
        return VectorIndex(repository)

    @pytest.mark.asyncio
    async def test_results_are_tenant_scoped_and_floored(self, index: VectorIndex) -> None:
        results = await index.search("tenant_a", [1.0, 0.0], k=10, similarity_floor=0.7)

        assert [(m.chunk.video_id, m.chunk.chunk_index) for m in results] == [
            ("vid_b", 1),
            ("vid_a", 0),
            ("vid_b", 0),
        ]
        assert all(m.chunk.tenant_id == "tenant_a" for m in results)
        assert results[0].similarity == pytest.approx(1.0)
        assert results[0].video_title == "Lecture vid_b"

    @pytest.mark.asyncio
    async def test_top_k_limit(self, index: VectorIndex) -> None:
        results = await index.search("tenant_a", [1.0, 0.0], k=1)

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_anchor_boost_reorders_without_excluding(self, index: VectorIndex) -> None:
        results = await index.search(
            "tenant_a", [1.0, 0.0], k=3, boost_video_id="vid_a", boost=0.15
        )

        assert [(m.chunk.video_id, m.chunk.chunk_index) for m in results] == [
            ("vid_a", 0),
            ("vid_b", 1),
            ("vid_b", 0),
        ]
        # The boost never changes the reported similarity.
        assert results[0].similarity == pytest.approx(0.9, abs=1e-6)

    @pytest.mark.asyncio
    async def test_no_relevant_passage_is_empty(self, index: VectorIndex) -> None:
        assert await index.search("tenant_a", [1.0, 0.0], similarity_floor=1.01) == []
        assert await index.search("tenant_a", [1.0, 0.0], k=0) == []
        assert await index.search("tenant_empty", [1.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_search_requires_tenant(self, index: VectorIndex) -> None:
        with pytest.raises(ValidationFailed):
            await index.search("", [1.0, 0.0])

    @pytest.mark.asyncio
    async def test_replaced_generation_is_invisible(
        self, index: VectorIndex, repository: InMemoryRepository
    ) -> None:
        await repository.replace_chunks("vid_b", [make_chunk("vid_b", 0, [0.0, 1.0])])

        results = await index.search("tenant_a", [1.0, 0.0], k=10)

        assert [(m.chunk.video_id, m.chunk.generation) for m in results] == [("vid_a", 1)]

    def test_rank_matches_breaks_ties_deterministically(self) -> None:
        matches = [
            ChunkMatch(chunk=make_chunk("vid_b", 0, [1.0]), similarity=0.8),
            ChunkMatch(chunk=make_chunk("vid_a", 2, [1.0]), similarity=0.8),
            ChunkMatch(chunk=make_chunk("vid_a", 0, [1.0]), similarity=0.8),
            ChunkMatch(chunk=make_chunk("vid_x", 0, [1.0], tenant_id="tenant_b"), similarity=0.99),
        ]

        ranked = rank_matches(matches, "tenant_a", k=5, similarity_floor=0.7)

        assert [(m.chunk.video_id, m.chunk.chunk_index) for m in ranked] == [
            ("vid_a", 0),
            ("vid_b", 0),
            ("vid_a", 2),
        ]
