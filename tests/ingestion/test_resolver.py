"""Unit tests for the transcript source resolver."""

import pytest

from lecturechat.errors import ValidationFailed
from lecturechat.ingestion.resolver import PLANS, TranscriptSourceResolver
from lecturechat.ingestion.schemas import ExtractionMethod, SourceKind


@pytest.mark.unit
class TestTranscriptSourceResolver:
    """Test extraction plans and the caption quality policy hook."""

    @pytest.mark.parametrize("kind", list(SourceKind))
    def test_paid_method_never_precedes_free_method(self, kind: SourceKind) -> None:
        plan = list(PLANS[kind])

        first_paid = next((i for i, m in enumerate(plan) if m.is_paid), len(plan))
        assert all(m.is_paid for m in plan[first_paid:])

    def test_youtube_uses_free_captions_only(self, video_factory) -> None:
        video = video_factory(source_kind=SourceKind.EMBED_YOUTUBE)

        assert TranscriptSourceResolver().plan(video) == [ExtractionMethod.YOUTUBE_CAPTIONS]

    def test_managed_cdn_tries_captions_before_whisper(self, video_factory) -> None:
        video = video_factory(source_kind=SourceKind.MANAGED_CDN)

        assert TranscriptSourceResolver().plan(video) == [
            ExtractionMethod.MUX_AUTO_CAPTIONS,
            ExtractionMethod.WHISPER,
        ]

    def test_upload_goes_straight_to_whisper(self, video_factory) -> None:
        video = video_factory(source_kind=SourceKind.UPLOADED_FILE)

        assert TranscriptSourceResolver().plan(video) == [ExtractionMethod.WHISPER]

    def test_unknown_source_kind_is_rejected(
        self, video_factory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delitem(PLANS, SourceKind.EMBED_LOOM)
        video = video_factory(source_kind=SourceKind.EMBED_LOOM)

        with pytest.raises(ValidationFailed):
            TranscriptSourceResolver().plan(video)

    def test_plan_is_a_fresh_list(self, video_factory) -> None:
        resolver = TranscriptSourceResolver()
        video = video_factory(source_kind=SourceKind.MANAGED_CDN)

        resolver.plan(video).clear()

        assert len(resolver.plan(video)) == 2

    def test_accepts_everything_without_policy(self, transcript_factory) -> None:
        transcript = transcript_factory(ExtractionMethod.MUX_AUTO_CAPTIONS)

        assert TranscriptSourceResolver().accepts(transcript, [ExtractionMethod.WHISPER])

    def test_policy_rejects_free_transcript_when_paid_remains(
        self, transcript_factory
    ) -> None:
        resolver = TranscriptSourceResolver(caption_policy=lambda t: len(t.segments) > 10)
        transcript = transcript_factory(ExtractionMethod.MUX_AUTO_CAPTIONS, segment_count=3)

        assert not resolver.accepts(transcript, [ExtractionMethod.WHISPER])

    def test_policy_ignored_when_no_paid_method_remains(self, transcript_factory) -> None:
        resolver = TranscriptSourceResolver(caption_policy=lambda t: False)
        transcript = transcript_factory(ExtractionMethod.YOUTUBE_CAPTIONS)

        assert resolver.accepts(transcript, [])

    def test_policy_never_rejects_paid_transcript(self, transcript_factory) -> None:
        resolver = TranscriptSourceResolver(caption_policy=lambda t: False)
        transcript = transcript_factory(ExtractionMethod.WHISPER)

        assert resolver.accepts(transcript, [])
