"""Persistence interface shared by the ingestion pipeline and chat engine."""

from abc import ABC, abstractmethod
from datetime import datetime

from lecturechat.chat.schemas import ChatMessage, ChatSession, UsageRecord
from lecturechat.ingestion.schemas import (
    Chunk,
    ChunkMatch,
    ExtractionMethod,
    Video,
    VideoStatus,
)


class Repository(ABC):
    """CRUD for videos, chunks, sessions, messages and usage records.

    Implementations own the invariants that span rows:

    - Chunks belong to exactly one video and are removed with it.
    - ``replace_chunks`` is atomic from a searcher's point of view: chunks are
      written under a new generation and become visible only when the video's
      generation pointer flips.
    - ``claim_video`` is a compare-and-set on the video status, so only one
      job can move a video out of a given state.
    - ``search_chunks`` never returns chunks of another tenant or of an
      inactive generation.
    - Messages belong to their session and are removed with it.
    """

    # Videos

    @abstractmethod
    async def insert_video(self, video: Video) -> Video: ...

    @abstractmethod
    async def get_video(self, video_id: str) -> Video | None: ...

    @abstractmethod
    async def get_videos(self, video_ids: list[str]) -> dict[str, Video]: ...

    @abstractmethod
    async def list_videos(self, tenant_id: str) -> list[Video]: ...

    @abstractmethod
    async def delete_video(self, video_id: str) -> None:
        """Delete a video and every chunk it owns."""

    @abstractmethod
    async def claim_video(
        self,
        video_id: str,
        expected: set[VideoStatus],
        status: VideoStatus,
    ) -> Video | None:
        """Atomically move a video to ``status`` if it is in ``expected``.

        Returns:
            The updated video, or None when another caller got there first.
        """

    @abstractmethod
    async def update_video_status(
        self,
        video_id: str,
        status: VideoStatus,
        error_message: str | None = None,
        extraction_method: ExtractionMethod | None = None,
    ) -> None: ...

    @abstractmethod
    async def record_extraction(
        self,
        video_id: str,
        transcript_text: str,
        method: ExtractionMethod,
        cost_usd: float,
        duration_seconds: float | None,
    ) -> None:
        """Persist the transcript and the spend it incurred."""

    @abstractmethod
    async def mark_completed(self, video_id: str) -> None: ...

    @abstractmethod
    async def request_cancel(self, video_id: str) -> bool:
        """Flag an in-flight job for cancellation.

        Returns:
            False when the video does not exist.
        """

    @abstractmethod
    async def is_cancel_requested(self, video_id: str) -> bool:
        """True when cancellation was requested or the video no longer exists."""

    @abstractmethod
    async def reset_video(self, video_id: str) -> None:
        """Put a video back to ``pending`` with error and cancel flag cleared."""

    @abstractmethod
    async def list_stuck_videos(self, updated_before: datetime) -> list[Video]:
        """In-flight videos whose last update is older than ``updated_before``."""

    # Chunks

    @abstractmethod
    async def replace_chunks(self, video_id: str, chunks: list[Chunk]) -> int:
        """Atomically replace a video's searchable chunk set.

        Returns:
            The new active generation.
        """

    @abstractmethod
    async def list_chunks(self, video_id: str) -> list[Chunk]:
        """Chunks of the active generation, ordered by index."""

    @abstractmethod
    async def search_chunks(
        self,
        tenant_id: str,
        query_vector: list[float],
        match_count: int,
        similarity_floor: float,
    ) -> list[ChunkMatch]:
        """Tenant-scoped cosine search over active chunks at or above the floor."""

    # Sessions

    @abstractmethod
    async def create_session(self, session: ChatSession) -> ChatSession: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> ChatSession | None: ...

    @abstractmethod
    async def latest_session(
        self, tenant_id: str, requester_id: str
    ) -> ChatSession | None:
        """Most recently active non-archived session of a requester."""

    @abstractmethod
    async def touch_session(self, session_id: str, at: datetime) -> None: ...

    @abstractmethod
    async def set_session_title(self, session_id: str, title: str) -> None: ...

    @abstractmethod
    async def archive_session(self, session_id: str) -> bool: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Hard-delete a session and its messages."""

    @abstractmethod
    async def list_sessions(
        self,
        tenant_id: str,
        requester_id: str | None = None,
        include_archived: bool = False,
    ) -> list[ChatSession]:
        """Sessions ordered by last activity, newest first."""

    # Messages

    @abstractmethod
    async def add_message(self, message: ChatMessage) -> ChatMessage: ...

    @abstractmethod
    async def list_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        """Messages in creation order; with ``limit``, the most recent ones."""

    @abstractmethod
    async def count_messages(self, session_id: str) -> int: ...

    @abstractmethod
    async def list_tenant_messages(
        self, tenant_id: str, since: datetime | None = None
    ) -> list[ChatMessage]: ...

    # Usage

    @abstractmethod
    async def add_usage_record(self, record: UsageRecord) -> UsageRecord: ...

    @abstractmethod
    async def list_usage_records(
        self,
        tenant_id: str,
        session_id: str | None = None,
        since: datetime | None = None,
    ) -> list[UsageRecord]: ...
