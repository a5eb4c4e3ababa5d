"""YouTube caption provider backed by the Supadata transcript API."""

import asyncio

from supadata import Supadata

from lecturechat.errors import (
    NotAvailable,
    PermanentReject,
    PipelineError,
    ProviderPermanent,
    RateLimited,
    TransientNetwork,
)
from lecturechat.utils.logging import get_logger

from ..config import IngestionConfig
from ..schemas import ExtractionMethod, Transcript, TranscriptSegment, Video
from .base import TranscriptionProvider

logger = get_logger(__name__)


class YouTubeCaptionProvider(TranscriptionProvider):
    """Fetch platform-native YouTube captions (free) via Supadata.

    Supadata returns segments with millisecond offsets and durations, which are
    converted to second-based transcript segments.
    """

    method = ExtractionMethod.YOUTUBE_CAPTIONS

    def __init__(self, config: IngestionConfig, client: Supadata | None = None):
        """Initialize the provider.

        Args:
            config: Configuration with the Supadata API key and caption timeout.
            client: Optional pre-built Supadata client (used by tests).
        """
        self.config = config
        self.timeout_seconds = config.caption_timeout_seconds
        self.client = client or Supadata(api_key=config.supadata_api_key)
        logger.info(
            "youtube_provider_initialized",
            api_key_present=bool(config.supadata_api_key),
        )

    async def fetch(self, video: Video) -> Transcript:
        video_id = video.external_id or ""
        logger.info("fetching_youtube_captions", video_id=video.id, external_id=video_id)

        try:
            response = await asyncio.to_thread(
                self.client.youtube.transcript,
                video_id=video_id,
                text=False,
            )
        except Exception as e:
            raise self._classify(e) from e

        segments = [
            TranscriptSegment(
                text=seg.text,
                start=seg.offset / 1000,
                end=(seg.offset + seg.duration) / 1000,
            )
            for seg in response.content
            if seg.text and seg.text.strip()
        ]

        logger.info(
            "youtube_captions_fetched",
            video_id=video.id,
            segments=len(segments),
            lang=response.lang,
        )
        return Transcript.from_segments(
            segments, method=self.method, language=response.lang
        )

    def _classify(self, error: Exception) -> PipelineError:
        """Map a Supadata error onto the failure taxonomy."""
        error_str = str(error).lower()
        method = self.method.value

        if "transcript-unavailable" in error_str or "206" in error_str:
            return NotAvailable("No captions available for this video", method)
        if "not-found" in error_str or "404" in error_str:
            return PermanentReject("Video not found or private", method)
        if "limit-exceeded" in error_str or "429" in error_str:
            return RateLimited("Supadata rate limit exceeded", method)
        if "unauthorized" in error_str or "401" in error_str or "403" in error_str:
            return ProviderPermanent("Supadata rejected credentials", method)

        logger.warning("youtube_caption_fetch_error", error_type=type(error).__name__)
        return TransientNetwork(f"Caption fetch failed: {type(error).__name__}", method)
