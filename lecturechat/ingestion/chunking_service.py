"""Chunking service for word-based, timestamp-preserving transcript segmentation."""

from lecturechat.utils.logging import get_logger

from .config import IngestionConfig
from .schemas import Chunk, Transcript, TranscriptSegment, Video

logger = get_logger(__name__)


def count_words(text: str) -> int:
    return len(text.split())


class ChunkingService:
    """Service for chunking transcripts into overlapping, timed passages.

    Segments are accumulated until the running word count reaches the target,
    then the chunk is closed and the next one is seeded with trailing segments
    from the previous chunk so adjacent chunks share context. Segments are
    never split, so a single long segment becomes its own chunk.
    """

    def __init__(self, config: IngestionConfig):
        """Initialize chunking service with configuration.

        Args:
            config: Configuration object with target and overlap sizes.
        """
        self.config = config
        logger.info(
            "chunking_service_initialized",
            target_words=config.chunk_target_words,
            overlap_words=config.chunk_overlap_words,
            overlap_segments=config.chunk_overlap_segments,
        )

    def chunk_transcript(self, transcript: Transcript, video: Video) -> list[Chunk]:
        """Chunk a transcript while preserving segment timestamps.

        Args:
            transcript: Full transcript with timed segments.
            video: Video the chunks belong to.

        Returns:
            Chunks ordered by ``chunk_index``, without embeddings. Empty when the
            transcript has no text.
        """
        segments = self._segments(transcript)
        logger.info(
            "chunking_started",
            video_id=video.id,
            segments=len(segments),
        )

        chunks: list[Chunk] = []
        current: list[TranscriptSegment] = []
        current_words = 0
        seeded = 0

        for segment in segments:
            current.append(segment)
            current_words += count_words(segment.text)

            if current_words >= self.config.chunk_target_words:
                chunks.append(self._create_chunk(video, current, len(chunks)))

                current = self._overlap_seed(current)
                current_words = sum(count_words(s.text) for s in current)
                seeded = len(current)

        # A tail made only of overlap text is already covered by the last chunk.
        if len(current) > seeded:
            chunks.append(self._create_chunk(video, current, len(chunks)))

        logger.info(
            "chunking_completed",
            video_id=video.id,
            chunks_created=len(chunks),
        )
        return chunks

    def _segments(self, transcript: Transcript) -> list[TranscriptSegment]:
        segments = [s for s in transcript.segments if s.text.strip()]
        if segments or not transcript.text.strip():
            return segments

        # Untimed transcript: treat the whole text as one segment.
        return [
            TranscriptSegment(
                text=transcript.text.strip(),
                start=0.0,
                end=transcript.duration_seconds or 0.0,
            )
        ]

    def _overlap_seed(self, segments: list[TranscriptSegment]) -> list[TranscriptSegment]:
        """Trailing segments carried into the next chunk.

        At most ``chunk_overlap_segments`` segments whose combined word count
        stays within ``chunk_overlap_words``.
        """
        seed: list[TranscriptSegment] = []
        words = 0
        for segment in reversed(segments[1:]):
            if len(seed) >= self.config.chunk_overlap_segments:
                break
            words += count_words(segment.text)
            if words > self.config.chunk_overlap_words:
                break
            seed.insert(0, segment)
        return seed

    def _create_chunk(
        self,
        video: Video,
        segments: list[TranscriptSegment],
        chunk_index: int,
    ) -> Chunk:
        text = " ".join(s.text.strip() for s in segments)
        start = segments[0].start
        return Chunk(
            video_id=video.id,
            tenant_id=video.tenant_id,
            chunk_index=chunk_index,
            text=text,
            word_count=count_words(text),
            start_seconds=start,
            end_seconds=max(start, segments[-1].end),
        )
