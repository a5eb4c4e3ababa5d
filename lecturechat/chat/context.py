"""Grounding-context construction and timestamp formatting helpers."""

from lecturechat.ingestion.schemas import ChunkMatch

NO_CONTEXT_NOTICE = (
    "No passages from the video library matched this question. Say that no "
    "relevant video content was found before offering any general guidance."
)


def format_timestamp(seconds: float) -> str:
    """Format seconds as MM:SS, or H:MM:SS past the first hour.

    Examples:
        >>> format_timestamp(125)
        '02:05'
        >>> format_timestamp(3725)
        '1:02:05'
    """
    total = max(int(seconds), 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def parse_timestamp(label: str) -> float:
    """Inverse of ``format_timestamp``; accepts MM:SS and H:MM:SS.

    Raises:
        ValueError: The label is not a timestamp.
    """
    parts = label.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid timestamp: {label!r}")

    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return float(seconds)


def source_label(index: int) -> str:
    return f"Source {index}"


def build_grounding_context(matches: list[ChunkMatch]) -> str:
    """Render retrieved passages as numbered, timestamped sources.

    Each source shows its video title and the chunk's time range, followed
    by the chunk text. Source numbers are 1-based and are what the model
    cites back.
    """
    if not matches:
        return NO_CONTEXT_NOTICE

    blocks = []
    for index, match in enumerate(matches, start=1):
        chunk = match.chunk
        title = match.video_title or "Untitled video"
        blocks.append(
            f"{source_label(index)}: \"{title}\" @ {format_timestamp(chunk.start_seconds)}"
            f" (until {format_timestamp(chunk.end_seconds)})\n{chunk.text}"
        )
    return "\n\n".join(blocks)
