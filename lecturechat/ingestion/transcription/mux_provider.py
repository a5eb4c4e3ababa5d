"""Mux auto-caption provider and shared Mux asset helpers."""

import httpx

from lecturechat.errors import NotAvailable, PermanentReject, ProviderPermanent
from lecturechat.utils.logging import get_logger

from ..config import IngestionConfig
from ..schemas import ExtractionMethod, Transcript, Video
from .base import TranscriptionProvider, raise_for_status
from .webvtt import parse_webvtt

logger = get_logger(__name__)

MUX_API_BASE = "https://api.mux.com/video/v1"
MUX_STREAM_BASE = "https://stream.mux.com"


def mux_audio_url(playback_id: str) -> str:
    """URL of the asset's static audio-only rendition."""
    return f"{MUX_STREAM_BASE}/{playback_id}/audio.m4a"


class MuxCaptionProvider(TranscriptionProvider):
    """Use Mux's generated captions before paying for speech-to-text.

    The asset is inspected for a ready text track; its WebVTT file is then
    downloaded from the playback domain and parsed.
    """

    method = ExtractionMethod.MUX_AUTO_CAPTIONS

    def __init__(self, config: IngestionConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client
        self.timeout_seconds = config.caption_timeout_seconds

    async def get_asset(self, asset_id: str) -> dict:
        """Fetch the asset record from the Mux API."""
        if not (self.config.mux_token_id and self.config.mux_token_secret):
            raise ProviderPermanent(
                "MUX_TOKEN_ID and MUX_TOKEN_SECRET are not configured",
                self.method.value,
            )

        response = await self.http_client.get(
            f"{MUX_API_BASE}/assets/{asset_id}",
            auth=(self.config.mux_token_id, self.config.mux_token_secret),
        )
        raise_for_status(response, self.method, not_found=PermanentReject)
        return response.json().get("data") or {}

    async def fetch(self, video: Video) -> Transcript:
        asset = await self.get_asset(video.asset_id or "")

        text_tracks = [
            t
            for t in asset.get("tracks") or []
            if t.get("type") == "text" and t.get("status", "ready") == "ready"
        ]
        if not text_tracks:
            raise NotAvailable("Asset has no ready caption track", self.method.value)
        track = text_tracks[0]

        response = await self.http_client.get(
            f"{MUX_STREAM_BASE}/{video.playback_id}/text/{track['id']}.vtt"
        )
        raise_for_status(response, self.method)

        segments = parse_webvtt(response.text)
        if not segments:
            raise NotAvailable("Caption track contains no cues", self.method.value)

        logger.info(
            "mux_captions_fetched",
            video_id=video.id,
            track_id=track["id"],
            segments=len(segments),
        )
        return Transcript.from_segments(
            segments,
            method=self.method,
            language=track.get("language_code"),
            duration_seconds=asset.get("duration"),
        )
