"""Resolve inline citation markers in model output to video references."""

import math
import re

from lecturechat.ingestion.schemas import ChunkMatch
from lecturechat.utils.logging import get_logger

from .context import parse_timestamp
from .schemas import VideoReference

logger = get_logger(__name__)

# [Source 2 @ 04:10], [Source 2 @ 1:04:10] or [Some Video Title @ 04:10]
CITATION_PATTERN = re.compile(
    r"\[(?P<label>[^\[\]@]+?)\s*@\s*(?P<timestamp>\d{1,2}:\d{2}(?::\d{2})?)\]"
)
SOURCE_LABEL_PATTERN = re.compile(r"^source\s+(?P<number>\d+)$", re.IGNORECASE)

SNIPPET_CHARS = 200


def _snippet(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= SNIPPET_CHARS:
        return text
    return text[:SNIPPET_CHARS].rsplit(" ", 1)[0] + "…"


def _resolve_match(
    label: str, timestamp: float, matches: list[ChunkMatch]
) -> ChunkMatch | None:
    source = SOURCE_LABEL_PATTERN.match(label)
    if source:
        number = int(source.group("number"))
        return matches[number - 1] if 1 <= number <= len(matches) else None

    wanted = label.strip().strip('"').casefold()
    candidates = [m for m in matches if m.video_title.strip().casefold() == wanted]
    for match in candidates:
        if match.chunk.start_seconds <= timestamp <= match.chunk.end_seconds:
            return match
    return candidates[0] if candidates else None


def extract_references(content: str, matches: list[ChunkMatch]) -> list[VideoReference]:
    """Parse citation markers into ordered, de-duplicated video references.

    A marker's timestamp that falls outside the cited chunk's range is
    snapped to the chunk start. Markers that cite unknown sources are
    dropped.
    """
    references: list[VideoReference] = []
    seen: set[tuple[str, int]] = set()

    for marker in CITATION_PATTERN.finditer(content):
        label = marker.group("label").strip()
        try:
            timestamp = parse_timestamp(marker.group("timestamp"))
        except ValueError:
            continue

        match = _resolve_match(label, timestamp, matches)
        if match is None:
            logger.debug("citation_unresolved", label=label)
            continue

        chunk = match.chunk
        # Labels are whole seconds; a chunk starting at 12.4s is cited as 00:12.
        if math.floor(chunk.start_seconds) <= timestamp <= chunk.end_seconds:
            timestamp = max(timestamp, chunk.start_seconds)
        else:
            timestamp = chunk.start_seconds

        key = (chunk.video_id, int(timestamp))
        if key in seen:
            continue
        seen.add(key)

        references.append(
            VideoReference(
                video_id=chunk.video_id,
                video_title=match.video_title,
                timestamp=timestamp,
                snippet=_snippet(chunk.text),
            )
        )

    return references
