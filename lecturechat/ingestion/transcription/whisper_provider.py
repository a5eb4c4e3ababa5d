"""Paid speech-to-text provider backed by OpenAI Whisper."""

import asyncio
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI
from supabase import Client

from lecturechat.errors import (
    NotAvailable,
    PermanentReject,
    ProviderPermanent,
    ValidationFailed,
    classify_openai_error,
)
from lecturechat.utils.logging import get_logger

from ..config import IngestionConfig
from ..schemas import ExtractionMethod, SourceKind, Transcript, TranscriptSegment, Video
from .base import TranscriptionProvider, raise_for_status
from .mux_provider import mux_audio_url

logger = get_logger(__name__)


class WhisperProvider(TranscriptionProvider):
    """Transcribe audio with Whisper, requesting segment-level timestamps.

    Managed-CDN assets are transcribed from their static audio rendition;
    uploads are read from Supabase Storage. The caller prices the result from
    ``Transcript.duration_seconds``.
    """

    method = ExtractionMethod.WHISPER

    def __init__(
        self,
        config: IngestionConfig,
        http_client: httpx.AsyncClient,
        client: AsyncOpenAI | None = None,
        storage: Client | None = None,
    ):
        """Initialize the provider.

        Args:
            config: Configuration with model, size ceiling and timeout.
            http_client: Shared client used to download CDN audio.
            client: Optional pre-built OpenAI client.
            storage: Supabase client used to read uploaded files.
        """
        self.config = config
        self.http_client = http_client
        self.storage = storage
        self.timeout_seconds = config.transcription_timeout_seconds
        self.client = client or AsyncOpenAI(
            base_url=config.transcription_base_url,
            api_key=config.transcription_api_key,
        )
        logger.info(
            "whisper_provider_initialized",
            model=config.transcription_model,
            storage_configured=storage is not None,
        )

    async def fetch(self, video: Video) -> Transcript:
        filename, data = await self._load_audio(video)

        if len(data) > self.config.transcription_max_bytes:
            raise PermanentReject(
                f"Media is {len(data) / 1024 / 1024:.1f} MB, above the "
                f"{self.config.transcription_max_bytes / 1024 / 1024:.0f} MB limit",
                self.method.value,
            )

        logger.info(
            "whisper_transcription_started",
            video_id=video.id,
            filename=filename,
            size_bytes=len(data),
        )
        try:
            response = await self.client.audio.transcriptions.create(
                model=self.config.transcription_model,
                file=(filename, data),
                response_format="verbose_json",
                timestamp_granularities=["segment"],
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e, self.method.value) from e

        segments = [
            TranscriptSegment(
                text=_field(seg, "text").strip(),
                start=float(_field(seg, "start")),
                end=max(float(_field(seg, "start")), float(_field(seg, "end"))),
            )
            for seg in (response.segments or [])
            if _field(seg, "text").strip()
        ]

        duration = float(response.duration) if response.duration else None
        logger.info(
            "whisper_transcription_completed",
            video_id=video.id,
            segments=len(segments),
            language=response.language,
            duration_seconds=duration,
        )

        if not segments:
            if not (response.text or "").strip():
                raise NotAvailable("No speech detected", self.method.value)
            # No segment timing returned; keep the text as one span.
            segments = [
                TranscriptSegment(text=response.text.strip(), start=0.0, end=duration or 0.0)
            ]

        return Transcript.from_segments(
            segments,
            method=self.method,
            language=response.language,
            duration_seconds=duration,
        )

    async def _load_audio(self, video: Video) -> tuple[str, bytes]:
        if video.source_kind is SourceKind.MANAGED_CDN:
            response = await self.http_client.get(mux_audio_url(video.playback_id or ""))
            raise_for_status(response, self.method)
            return f"{video.playback_id}.m4a", response.content

        if video.source_kind is SourceKind.UPLOADED_FILE:
            if self.storage is None:
                raise ProviderPermanent("Storage client is not configured", self.method.value)
            path = video.storage_path or ""
            try:
                data = await asyncio.to_thread(
                    self.storage.storage.from_(self.config.storage_bucket).download,
                    path,
                )
            except Exception as e:
                logger.warning(
                    "upload_download_failed",
                    video_id=video.id,
                    path=path,
                    error_type=type(e).__name__,
                )
                raise NotAvailable(f"Uploaded file not readable: {path}", self.method.value) from e
            return path.rsplit("/", 1)[-1] or f"{video.id}.bin", data

        raise ValidationFailed(
            f"{video.source_kind.value} sources have no media to transcribe",
            self.method.value,
        )


def _field(segment: Any, name: str) -> Any:
    # The SDK returns typed segment objects; some compatible servers return dicts.
    if isinstance(segment, dict):
        return segment.get(name, "" if name == "text" else 0.0)
    return getattr(segment, name)
