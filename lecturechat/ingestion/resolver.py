"""Transcript source resolver: picks the cheapest viable extraction plan."""

from collections.abc import Callable

from lecturechat.errors import ValidationFailed
from lecturechat.utils.logging import get_logger

from .schemas import ExtractionMethod, SourceKind, Transcript, Video

logger = get_logger(__name__)

# Free methods first; the paid method is always last.
PLANS: dict[SourceKind, tuple[ExtractionMethod, ...]] = {
    SourceKind.EMBED_YOUTUBE: (ExtractionMethod.YOUTUBE_CAPTIONS,),
    SourceKind.EMBED_LOOM: (ExtractionMethod.LOOM_TRANSCRIPT,),
    SourceKind.EMBED_VIMEO: (ExtractionMethod.VIMEO_TEXT_TRACKS,),
    SourceKind.MANAGED_CDN: (
        ExtractionMethod.MUX_AUTO_CAPTIONS,
        ExtractionMethod.WHISPER,
    ),
    SourceKind.UPLOADED_FILE: (ExtractionMethod.WHISPER,),
}

CaptionPolicy = Callable[[Transcript], bool]


class TranscriptSourceResolver:
    """Build ordered extraction plans for videos.

    An optional ``caption_policy`` decides whether a free transcript is good
    enough. It is only consulted when a paid method is still left in the
    plan; returning ``False`` makes the orchestrator move on to it.
    """

    def __init__(self, caption_policy: CaptionPolicy | None = None):
        self.caption_policy = caption_policy

    def plan(self, video: Video) -> list[ExtractionMethod]:
        """Return the methods to attempt for ``video``, cheapest first.

        Raises:
            ValidationFailed: The source kind has no known plan.
        """
        methods = PLANS.get(video.source_kind)
        if not methods:
            raise ValidationFailed(f"No extraction plan for {video.source_kind}")

        logger.debug(
            "extraction_plan_resolved",
            video_id=video.id,
            source_kind=video.source_kind.value,
            plan=[m.value for m in methods],
        )
        return list(methods)

    def accepts(
        self,
        transcript: Transcript,
        remaining: list[ExtractionMethod],
    ) -> bool:
        """Whether a transcript should be kept rather than paying for another.

        Paid transcripts and transcripts with no paid alternative left are
        always accepted.
        """
        if self.caption_policy is None or transcript.method.is_paid:
            return True
        if not any(m.is_paid for m in remaining):
            return True

        accepted = bool(self.caption_policy(transcript))
        if not accepted:
            logger.info(
                "free_transcript_rejected_by_policy",
                method=transcript.method.value,
                segments=len(transcript.segments),
            )
        return accepted
