"""Transcript extraction adapters, one per extraction method."""

import httpx
from supabase import Client

from ..config import IngestionConfig
from ..schemas import ExtractionMethod
from .base import TranscriptionProvider
from .loom_provider import LoomTranscriptProvider
from .mux_provider import MuxCaptionProvider
from .vimeo_provider import VimeoTextTrackProvider
from .webvtt import parse_webvtt
from .whisper_provider import WhisperProvider
from .youtube_provider import YouTubeCaptionProvider


def build_providers(
    config: IngestionConfig,
    http_client: httpx.AsyncClient,
    storage: Client | None = None,
) -> dict[ExtractionMethod, TranscriptionProvider]:
    """Create every adapter keyed by the method it implements."""
    providers: list[TranscriptionProvider] = [
        YouTubeCaptionProvider(config),
        LoomTranscriptProvider(config, http_client),
        VimeoTextTrackProvider(config, http_client),
        MuxCaptionProvider(config, http_client),
        WhisperProvider(config, http_client, storage=storage),
    ]
    return {provider.method: provider for provider in providers}


__all__ = [
    "LoomTranscriptProvider",
    "MuxCaptionProvider",
    "TranscriptionProvider",
    "VimeoTextTrackProvider",
    "WhisperProvider",
    "YouTubeCaptionProvider",
    "build_providers",
    "parse_webvtt",
]
