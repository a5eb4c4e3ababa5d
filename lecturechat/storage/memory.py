"""In-process repository used by tests, the CLI dry-run mode and local development."""

import asyncio
from datetime import UTC, datetime

import numpy as np

from lecturechat.chat.schemas import ChatMessage, ChatSession, UsageRecord
from lecturechat.ingestion.schemas import (
    Chunk,
    ChunkMatch,
    ExtractionMethod,
    Video,
    VideoStatus,
)
from lecturechat.utils.logging import get_logger

from .repository import Repository

logger = get_logger(__name__)


def cosine_similarity(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Cosine similarity of every row of ``matrix`` against ``vector``."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = matrix @ vector / norms
    return np.nan_to_num(scores, nan=0.0)


class InMemoryRepository(Repository):
    """Dictionary-backed repository.

    Chunks are stored per ``(video_id, generation)`` and only the video's
    active generation is searchable, mirroring the Supabase schema.
    """

    def __init__(self) -> None:
        self.videos: dict[str, Video] = {}
        self.chunks: dict[tuple[str, int], list[Chunk]] = {}
        self.sessions: dict[str, ChatSession] = {}
        self.messages: dict[str, list[ChatMessage]] = {}
        self.usage_records: list[UsageRecord] = []
        self._lock = asyncio.Lock()

    def _now(self) -> datetime:
        return datetime.now(UTC)

    def _update(self, video_id: str, **changes) -> Video | None:
        video = self.videos.get(video_id)
        if video is None:
            return None
        changes.setdefault("updated_at", self._now())
        updated = video.model_copy(update=changes)
        self.videos[video_id] = updated
        return updated

    # Videos

    async def insert_video(self, video: Video) -> Video:
        now = self._now()
        stored = video.model_copy(
            update={
                "created_at": video.created_at or now,
                "updated_at": video.updated_at or now,
            }
        )
        self.videos[video.id] = stored
        return stored

    async def get_video(self, video_id: str) -> Video | None:
        return self.videos.get(video_id)

    async def get_videos(self, video_ids: list[str]) -> dict[str, Video]:
        return {vid: self.videos[vid] for vid in video_ids if vid in self.videos}

    async def list_videos(self, tenant_id: str) -> list[Video]:
        return [v for v in self.videos.values() if v.tenant_id == tenant_id]

    async def delete_video(self, video_id: str) -> None:
        async with self._lock:
            self.videos.pop(video_id, None)
            for key in [k for k in self.chunks if k[0] == video_id]:
                del self.chunks[key]

    async def claim_video(
        self,
        video_id: str,
        expected: set[VideoStatus],
        status: VideoStatus,
    ) -> Video | None:
        async with self._lock:
            video = self.videos.get(video_id)
            if video is None or video.status not in expected:
                return None
            return self._update(video_id, status=status, error_message=None)

    async def update_video_status(
        self,
        video_id: str,
        status: VideoStatus,
        error_message: str | None = None,
        extraction_method: ExtractionMethod | None = None,
    ) -> None:
        changes: dict = {"status": status, "error_message": error_message}
        if extraction_method is not None:
            changes["extraction_method"] = extraction_method
        self._update(video_id, **changes)

    async def record_extraction(
        self,
        video_id: str,
        transcript_text: str,
        method: ExtractionMethod,
        cost_usd: float,
        duration_seconds: float | None,
    ) -> None:
        video = self.videos.get(video_id)
        if video is None:
            return
        self._update(
            video_id,
            transcript_text=transcript_text,
            extraction_method=method,
            extraction_cost_usd=video.extraction_cost_usd + cost_usd,
            duration_seconds=duration_seconds or video.duration_seconds,
        )

    async def mark_completed(self, video_id: str) -> None:
        now = self._now()
        self._update(
            video_id,
            status=VideoStatus.COMPLETED,
            error_message=None,
            last_synced_at=now,
            updated_at=now,
        )

    async def request_cancel(self, video_id: str) -> bool:
        return self._update(video_id, cancel_requested=True) is not None

    async def is_cancel_requested(self, video_id: str) -> bool:
        video = self.videos.get(video_id)
        return video is None or video.cancel_requested

    async def reset_video(self, video_id: str) -> None:
        self._update(
            video_id,
            status=VideoStatus.PENDING,
            error_message=None,
            cancel_requested=False,
        )

    async def list_stuck_videos(self, updated_before: datetime) -> list[Video]:
        return [
            v
            for v in self.videos.values()
            if v.status.is_in_flight
            and v.updated_at is not None
            and v.updated_at < updated_before
        ]

    # Chunks

    async def replace_chunks(self, video_id: str, chunks: list[Chunk]) -> int:
        async with self._lock:
            video = self.videos.get(video_id)
            if video is None:
                raise KeyError(video_id)

            generation = max(
                [video.active_generation] + [g for v, g in self.chunks if v == video_id]
            ) + 1
            self.chunks[(video_id, generation)] = [
                c.model_copy(
                    update={
                        "generation": generation,
                        "id": c.id or f"{video_id}:{generation}:{c.chunk_index}",
                    }
                )
                for c in sorted(chunks, key=lambda c: c.chunk_index)
            ]
            self._update(video_id, active_generation=generation)

            for key in [k for k in self.chunks if k[0] == video_id and k[1] != generation]:
                del self.chunks[key]

        logger.info(
            "chunks_replaced",
            video_id=video_id,
            generation=generation,
            count=len(chunks),
        )
        return generation

    async def list_chunks(self, video_id: str) -> list[Chunk]:
        video = self.videos.get(video_id)
        if video is None:
            return []
        return list(self.chunks.get((video_id, video.active_generation), []))

    async def search_chunks(
        self,
        tenant_id: str,
        query_vector: list[float],
        match_count: int,
        similarity_floor: float,
    ) -> list[ChunkMatch]:
        candidates: list[tuple[Chunk, str]] = []
        for video in self.videos.values():
            if video.tenant_id != tenant_id:
                continue
            for chunk in self.chunks.get((video.id, video.active_generation), []):
                if chunk.embedding is not None and chunk.tenant_id == tenant_id:
                    candidates.append((chunk, video.title))

        if not candidates or match_count <= 0:
            return []

        matrix = np.array([c.embedding for c, _ in candidates], dtype=float)
        scores = cosine_similarity(matrix, np.array(query_vector, dtype=float))

        matches = [
            ChunkMatch(chunk=chunk, similarity=float(score), video_title=title)
            for (chunk, title), score in zip(candidates, scores, strict=True)
            if score >= similarity_floor
        ]
        matches.sort(key=lambda m: (-m.similarity, m.chunk.chunk_index, m.chunk.video_id))
        return matches[:match_count]

    # Sessions

    async def create_session(self, session: ChatSession) -> ChatSession:
        self.sessions[session.id] = session
        self.messages.setdefault(session.id, [])
        return session

    async def get_session(self, session_id: str) -> ChatSession | None:
        return self.sessions.get(session_id)

    async def latest_session(
        self, tenant_id: str, requester_id: str
    ) -> ChatSession | None:
        sessions = await self.list_sessions(tenant_id, requester_id)
        return sessions[0] if sessions else None

    async def touch_session(self, session_id: str, at: datetime) -> None:
        session = self.sessions.get(session_id)
        if session is not None:
            self.sessions[session_id] = session.model_copy(update={"updated_at": at})

    async def set_session_title(self, session_id: str, title: str) -> None:
        session = self.sessions.get(session_id)
        if session is not None:
            self.sessions[session_id] = session.model_copy(update={"title": title})

    async def archive_session(self, session_id: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            return False
        self.sessions[session_id] = session.model_copy(update={"archived": True})
        return True

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.messages.pop(session_id, None)

    async def list_sessions(
        self,
        tenant_id: str,
        requester_id: str | None = None,
        include_archived: bool = False,
    ) -> list[ChatSession]:
        sessions = [
            s
            for s in self.sessions.values()
            if s.tenant_id == tenant_id
            and (requester_id is None or s.requester_id == requester_id)
            and (include_archived or not s.archived)
        ]
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    # Messages

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        self.messages.setdefault(message.session_id, []).append(message)
        return message

    async def list_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        messages = list(self.messages.get(session_id, []))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def count_messages(self, session_id: str) -> int:
        return len(self.messages.get(session_id, []))

    async def list_tenant_messages(
        self, tenant_id: str, since: datetime | None = None
    ) -> list[ChatMessage]:
        return sorted(
            (
                m
                for messages in self.messages.values()
                for m in messages
                if m.tenant_id == tenant_id and (since is None or m.created_at >= since)
            ),
            key=lambda m: m.created_at,
        )

    # Usage

    async def add_usage_record(self, record: UsageRecord) -> UsageRecord:
        self.usage_records.append(record)
        return record

    async def list_usage_records(
        self,
        tenant_id: str,
        session_id: str | None = None,
        since: datetime | None = None,
    ) -> list[UsageRecord]:
        return [
            r
            for r in self.usage_records
            if r.tenant_id == tenant_id
            and (session_id is None or r.session_id == session_id)
            and (since is None or r.created_at >= since)
        ]
