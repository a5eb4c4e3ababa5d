"""Vimeo text-track provider."""

import httpx

from lecturechat.errors import NotAvailable, PermanentReject, ProviderPermanent
from lecturechat.utils.logging import get_logger

from ..config import IngestionConfig
from ..schemas import ExtractionMethod, Transcript, Video
from .base import TranscriptionProvider, raise_for_status
from .webvtt import parse_webvtt

logger = get_logger(__name__)

VIMEO_API_BASE = "https://api.vimeo.com"


class VimeoTextTrackProvider(TranscriptionProvider):
    """Download and parse a Vimeo video's WebVTT text track.

    Active tracks are preferred; Vimeo's auto-generated tracks count as free
    captions.
    """

    method = ExtractionMethod.VIMEO_TEXT_TRACKS

    def __init__(self, config: IngestionConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client
        self.timeout_seconds = config.caption_timeout_seconds

    async def fetch(self, video: Video) -> Transcript:
        if not self.config.vimeo_access_token:
            raise ProviderPermanent(
                "VIMEO_ACCESS_TOKEN is not configured", self.method.value
            )

        response = await self.http_client.get(
            f"{VIMEO_API_BASE}/videos/{video.external_id}/texttracks",
            headers={"Authorization": f"Bearer {self.config.vimeo_access_token}"},
        )
        raise_for_status(response, self.method, not_found=PermanentReject)

        tracks = [t for t in response.json().get("data") or [] if t.get("link")]
        if not tracks:
            raise NotAvailable("Video has no text tracks", self.method.value)
        track = next((t for t in tracks if t.get("active")), tracks[0])

        vtt_response = await self.http_client.get(track["link"])
        raise_for_status(vtt_response, self.method)

        segments = parse_webvtt(vtt_response.text)
        if not segments:
            raise NotAvailable("Text track contains no cues", self.method.value)

        logger.info(
            "vimeo_text_track_fetched",
            video_id=video.id,
            segments=len(segments),
            language=track.get("language"),
        )
        return Transcript.from_segments(
            segments, method=self.method, language=track.get("language")
        )
