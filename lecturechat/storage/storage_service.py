"""Supabase-backed repository for videos, chunks, sessions, messages and usage."""

import json
from datetime import UTC, datetime
from typing import Any

from supabase import Client, create_client

from lecturechat.chat.schemas import ChatMessage, ChatSession, UsageRecord
from lecturechat.errors import TransientNetwork
from lecturechat.ingestion.config import IngestionConfig
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

IN_FLIGHT_STATUSES = [s.value for s in VideoStatus if s.is_in_flight]


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _parse_embedding(value: Any) -> list[float] | None:
    # PostgREST returns pgvector columns as their text form "[x,y,...]".
    if value is None:
        return None
    if isinstance(value, str):
        return [float(x) for x in json.loads(value)]
    return [float(x) for x in value]


def _chunk_from_row(row: dict[str, Any]) -> Chunk:
    return Chunk(
        id=str(row["id"]) if row.get("id") is not None else None,
        video_id=row["video_id"],
        tenant_id=row["tenant_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        word_count=row.get("word_count") or len(row["text"].split()),
        start_seconds=row["start_seconds"],
        end_seconds=row["end_seconds"],
        embedding=_parse_embedding(row.get("embedding")),
        generation=row.get("generation", 0),
    )


class StorageService(Repository):
    """Repository backed by Supabase tables and a pgvector RPC.

    Tables: ``videos``, ``video_chunks``, ``chat_sessions``, ``chat_messages``
    and ``usage_records`` (see ``supabase/migrations``). Similarity search runs
    through the ``match_video_chunks`` function, which joins on the video's
    ``active_generation`` so replaced chunk sets are never visible.
    """

    def __init__(self, config: IngestionConfig, client: Client | None = None):
        """Initialize storage service with configuration.

        Args:
            config: Configuration object with Supabase credentials.
            client: Optional pre-built Supabase client.
        """
        self.config = config
        self.client: Client = client or create_client(
            config.supabase_url,
            config.supabase_key,
        )
        logger.info(
            "storage_service_initialized",
            supabase_url=config.supabase_url,
        )

    # Videos

    async def insert_video(self, video: Video) -> Video:
        data = video.model_dump(mode="json", exclude_none=True)
        data.setdefault("created_at", _now())
        data.setdefault("updated_at", data["created_at"])
        response = self.client.table("videos").insert(data).execute()
        logger.info("video_saved", video_id=video.id, status=video.status.value)
        return Video.model_validate(response.data[0]) if response.data else video

    async def get_video(self, video_id: str) -> Video | None:
        response = self.client.table("videos").select("*").eq("id", video_id).execute()
        if not response.data:
            logger.debug("video_not_found", video_id=video_id)
            return None
        return Video.model_validate(response.data[0])

    async def get_videos(self, video_ids: list[str]) -> dict[str, Video]:
        if not video_ids:
            return {}
        response = (
            self.client.table("videos")
            .select("*")
            .in_("id", list(set(video_ids)))
            .execute()
        )
        return {row["id"]: Video.model_validate(row) for row in response.data or []}

    async def list_videos(self, tenant_id: str) -> list[Video]:
        response = (
            self.client.table("videos")
            .select("*")
            .eq("tenant_id", tenant_id)
            .order("created_at")
            .execute()
        )
        return [Video.model_validate(row) for row in response.data or []]

    async def delete_video(self, video_id: str) -> None:
        # video_chunks.video_id cascades on delete
        self.client.table("videos").delete().eq("id", video_id).execute()
        logger.info("video_deleted", video_id=video_id)

    async def claim_video(
        self,
        video_id: str,
        expected: set[VideoStatus],
        status: VideoStatus,
    ) -> Video | None:
        response = (
            self.client.table("videos")
            .update({"status": status.value, "error_message": None, "updated_at": _now()})
            .eq("id", video_id)
            .in_("status", [s.value for s in expected])
            .execute()
        )
        if not response.data:
            logger.info("video_claim_lost", video_id=video_id, status=status.value)
            return None
        return Video.model_validate(response.data[0])

    async def update_video_status(
        self,
        video_id: str,
        status: VideoStatus,
        error_message: str | None = None,
        extraction_method: ExtractionMethod | None = None,
    ) -> None:
        try:
            data: dict[str, Any] = {
                "status": status.value,
                "error_message": error_message,
                "updated_at": _now(),
            }
            if extraction_method is not None:
                data["extraction_method"] = extraction_method.value

            self.client.table("videos").update(data).eq("id", video_id).execute()
            logger.info(
                "video_status_updated",
                video_id=video_id,
                status=status.value,
            )

        except Exception as e:
            logger.exception(
                "status_update_failed",
                video_id=video_id,
                error_type=type(e).__name__,
            )
            raise

    async def record_extraction(
        self,
        video_id: str,
        transcript_text: str,
        method: ExtractionMethod,
        cost_usd: float,
        duration_seconds: float | None,
    ) -> None:
        current = await self.get_video(video_id)
        previous_cost = current.extraction_cost_usd if current else 0.0

        data: dict[str, Any] = {
            "transcript_text": transcript_text,
            "extraction_method": method.value,
            "extraction_cost_usd": previous_cost + cost_usd,
            "updated_at": _now(),
        }
        if duration_seconds is not None:
            data["duration_seconds"] = duration_seconds

        self.client.table("videos").update(data).eq("id", video_id).execute()
        logger.info(
            "extraction_recorded",
            video_id=video_id,
            method=method.value,
            cost_usd=cost_usd,
        )

    async def mark_completed(self, video_id: str) -> None:
        now = _now()
        self.client.table("videos").update(
            {
                "status": VideoStatus.COMPLETED.value,
                "error_message": None,
                "last_synced_at": now,
                "updated_at": now,
            }
        ).eq("id", video_id).execute()
        logger.info("video_status_updated", video_id=video_id, status="completed")

    async def request_cancel(self, video_id: str) -> bool:
        response = (
            self.client.table("videos")
            .update({"cancel_requested": True, "updated_at": _now()})
            .eq("id", video_id)
            .execute()
        )
        return bool(response.data)

    async def is_cancel_requested(self, video_id: str) -> bool:
        response = (
            self.client.table("videos")
            .select("cancel_requested")
            .eq("id", video_id)
            .execute()
        )
        # A deleted row counts as cancelled.
        return not response.data or bool(response.data[0].get("cancel_requested"))

    async def reset_video(self, video_id: str) -> None:
        self.client.table("videos").update(
            {
                "status": VideoStatus.PENDING.value,
                "error_message": None,
                "cancel_requested": False,
                "updated_at": _now(),
            }
        ).eq("id", video_id).execute()
        logger.info("video_reset", video_id=video_id)

    async def list_stuck_videos(self, updated_before: datetime) -> list[Video]:
        response = (
            self.client.table("videos")
            .select("*")
            .in_("status", IN_FLIGHT_STATUSES)
            .lt("updated_at", updated_before.isoformat())
            .execute()
        )
        return [Video.model_validate(row) for row in response.data or []]

    # Chunks

    async def replace_chunks(self, video_id: str, chunks: list[Chunk]) -> int:
        """Write a new chunk generation, flip the pointer, drop old generations.

        Until the pointer update commits, searches keep reading the previous
        generation. A failed insert removes the partial new generation.
        """
        video = await self.get_video(video_id)
        if video is None:
            raise KeyError(video_id)
        generation = video.active_generation + 1

        rows = [
            {
                "video_id": video_id,
                "tenant_id": chunk.tenant_id,
                "chunk_index": chunk.chunk_index,
                "generation": generation,
                "text": chunk.text,
                "word_count": chunk.word_count,
                "start_seconds": chunk.start_seconds,
                "end_seconds": chunk.end_seconds,
                "embedding": chunk.embedding,
            }
            for chunk in chunks
        ]

        try:
            if rows:
                self.client.table("video_chunks").insert(rows).execute()
        except Exception as e:
            logger.exception(
                "chunks_save_failed",
                video_id=video_id,
                count=len(rows),
                error_type=type(e).__name__,
            )
            (
                self.client.table("video_chunks")
                .delete()
                .eq("video_id", video_id)
                .eq("generation", generation)
                .execute()
            )
            raise

        self.client.table("videos").update(
            {"active_generation": generation, "updated_at": _now()}
        ).eq("id", video_id).execute()

        (
            self.client.table("video_chunks")
            .delete()
            .eq("video_id", video_id)
            .neq("generation", generation)
            .execute()
        )

        logger.info(
            "chunks_saved",
            video_id=video_id,
            generation=generation,
            count=len(rows),
        )
        return generation

    async def list_chunks(self, video_id: str) -> list[Chunk]:
        video = await self.get_video(video_id)
        if video is None:
            return []
        response = (
            self.client.table("video_chunks")
            .select("*")
            .eq("video_id", video_id)
            .eq("generation", video.active_generation)
            .order("chunk_index")
            .execute()
        )
        return [_chunk_from_row(row) for row in response.data or []]

    async def search_chunks(
        self,
        tenant_id: str,
        query_vector: list[float],
        match_count: int,
        similarity_floor: float,
    ) -> list[ChunkMatch]:
        try:
            response = self.client.rpc(
                "match_video_chunks",
                {
                    "query_embedding": query_vector,
                    "match_tenant_id": tenant_id,
                    "match_count": match_count,
                    "similarity_floor": similarity_floor,
                },
            ).execute()

            matches = [
                ChunkMatch(
                    chunk=_chunk_from_row(row),
                    similarity=float(row["similarity"]),
                    video_title=row.get("video_title") or "",
                )
                for row in response.data or []
                if row.get("tenant_id") == tenant_id
            ]
            logger.info(
                "vector_search_completed",
                results=len(matches),
                match_count=match_count,
            )
            return matches

        except Exception as e:
            logger.exception(
                "vector_search_failed",
                error_type=type(e).__name__,
            )
            raise TransientNetwork(f"Vector search failed: {type(e).__name__}") from e

    # Sessions

    async def create_session(self, session: ChatSession) -> ChatSession:
        self.client.table("chat_sessions").insert(
            session.model_dump(mode="json")
        ).execute()
        logger.info("session_created", session_id=session.id)
        return session

    async def get_session(self, session_id: str) -> ChatSession | None:
        response = (
            self.client.table("chat_sessions").select("*").eq("id", session_id).execute()
        )
        return ChatSession.model_validate(response.data[0]) if response.data else None

    async def latest_session(
        self, tenant_id: str, requester_id: str
    ) -> ChatSession | None:
        response = (
            self.client.table("chat_sessions")
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("requester_id", requester_id)
            .eq("archived", False)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        return ChatSession.model_validate(response.data[0]) if response.data else None

    async def touch_session(self, session_id: str, at: datetime) -> None:
        self.client.table("chat_sessions").update(
            {"updated_at": at.isoformat()}
        ).eq("id", session_id).execute()

    async def set_session_title(self, session_id: str, title: str) -> None:
        self.client.table("chat_sessions").update({"title": title}).eq(
            "id", session_id
        ).execute()

    async def archive_session(self, session_id: str) -> bool:
        response = (
            self.client.table("chat_sessions")
            .update({"archived": True})
            .eq("id", session_id)
            .execute()
        )
        return bool(response.data)

    async def delete_session(self, session_id: str) -> None:
        # chat_messages.session_id cascades on delete
        self.client.table("chat_sessions").delete().eq("id", session_id).execute()

    async def list_sessions(
        self,
        tenant_id: str,
        requester_id: str | None = None,
        include_archived: bool = False,
    ) -> list[ChatSession]:
        query = self.client.table("chat_sessions").select("*").eq("tenant_id", tenant_id)
        if requester_id is not None:
            query = query.eq("requester_id", requester_id)
        if not include_archived:
            query = query.eq("archived", False)
        response = query.order("updated_at", desc=True).execute()
        return [ChatSession.model_validate(row) for row in response.data or []]

    # Messages

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        self.client.table("chat_messages").insert(
            message.model_dump(mode="json")
        ).execute()
        return message

    async def list_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatMessage]:
        query = self.client.table("chat_messages").select("*").eq("session_id", session_id)
        if limit is not None:
            response = query.order("created_at", desc=True).limit(limit).execute()
            rows = list(reversed(response.data or []))
        else:
            rows = query.order("created_at").execute().data or []
        return [ChatMessage.model_validate(row) for row in rows]

    async def count_messages(self, session_id: str) -> int:
        response = (
            self.client.table("chat_messages")
            .select("id", count="exact")
            .eq("session_id", session_id)
            .execute()
        )
        return response.count or 0

    async def list_tenant_messages(
        self, tenant_id: str, since: datetime | None = None
    ) -> list[ChatMessage]:
        query = self.client.table("chat_messages").select("*").eq("tenant_id", tenant_id)
        if since is not None:
            query = query.gte("created_at", since.isoformat())
        response = query.order("created_at").execute()
        return [ChatMessage.model_validate(row) for row in response.data or []]

    # Usage

    async def add_usage_record(self, record: UsageRecord) -> UsageRecord:
        self.client.table("usage_records").insert(record.model_dump(mode="json")).execute()
        return record

    async def list_usage_records(
        self,
        tenant_id: str,
        session_id: str | None = None,
        since: datetime | None = None,
    ) -> list[UsageRecord]:
        query = self.client.table("usage_records").select("*").eq("tenant_id", tenant_id)
        if session_id is not None:
            query = query.eq("session_id", session_id)
        if since is not None:
            query = query.gte("created_at", since.isoformat())
        response = query.order("created_at").execute()
        return [UsageRecord.model_validate(row) for row in response.data or []]
