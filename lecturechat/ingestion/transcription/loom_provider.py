"""Loom transcript provider."""

import httpx

from lecturechat.errors import NotAvailable, ProviderPermanent
from lecturechat.utils.logging import get_logger

from ..config import IngestionConfig
from ..schemas import ExtractionMethod, Transcript, TranscriptSegment, Video
from .base import TranscriptionProvider, raise_for_status

logger = get_logger(__name__)

LOOM_API_BASE = "https://api.loom.com/v1"


class LoomTranscriptProvider(TranscriptionProvider):
    """Fetch the free Loom transcript for an embedded Loom video.

    Loom returns sentences with millisecond start/end times.
    """

    method = ExtractionMethod.LOOM_TRANSCRIPT

    def __init__(self, config: IngestionConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client
        self.timeout_seconds = config.caption_timeout_seconds

    async def fetch(self, video: Video) -> Transcript:
        if not self.config.loom_api_key:
            raise ProviderPermanent("LOOM_API_KEY is not configured", self.method.value)

        response = await self.http_client.get(
            f"{LOOM_API_BASE}/videos/{video.external_id}/transcript",
            headers={"Authorization": f"Bearer {self.config.loom_api_key}"},
        )
        raise_for_status(response, self.method)

        sentences = response.json().get("sentences") or []
        segments = [
            TranscriptSegment(
                text=s["text"].strip(),
                start=s["start_time"] / 1000,
                end=max(s["start_time"], s["end_time"]) / 1000,
            )
            for s in sentences
            if s.get("text", "").strip()
        ]
        if not segments:
            raise NotAvailable("Loom transcript is empty", self.method.value)

        logger.info("loom_transcript_fetched", video_id=video.id, segments=len(segments))
        return Transcript.from_segments(segments, method=self.method)
