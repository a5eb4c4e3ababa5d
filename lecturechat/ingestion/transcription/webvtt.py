"""WebVTT caption parsing into transcript segments."""

import re

from ..schemas import TranscriptSegment

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def parse_timestamp(raw: str) -> float:
    """Parse ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` into seconds.

    A comma decimal separator (SRT style) is accepted too.

    Raises:
        ValueError: If the value is not a cue timestamp.
    """
    value = raw.strip().replace(",", ".")
    parts = value.split(":")
    if len(parts) == 3:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    elif len(parts) == 2:
        hours, minutes, seconds = 0, int(parts[0]), float(parts[1])
    else:
        raise ValueError(f"Invalid cue timestamp: {raw!r}")
    return hours * 3600 + minutes * 60 + seconds


def _clean(text: str) -> str:
    text = _TAG_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip()


def parse_webvtt(content: str) -> list[TranscriptSegment]:
    """Parse a WebVTT document into ordered transcript segments.

    Each cue becomes one segment. Cue identifiers, the header, NOTE/STYLE/REGION
    blocks and cue settings after the end timestamp are ignored; inline markup
    such as ``<c>`` or ``<v Speaker>`` is stripped and multi-line cue text is
    joined with single spaces. Cues whose text is empty after cleanup are
    dropped.

    Args:
        content: Raw WebVTT file content.

    Returns:
        Segments in file order.
    """
    segments: list[TranscriptSegment] = []
    blocks = re.split(r"\n\s*\n", content.replace("\r\n", "\n").replace("\r", "\n"))

    for block in blocks:
        lines = [line for line in block.split("\n") if line.strip()]
        timing_index = next((i for i, line in enumerate(lines) if "-->" in line), None)
        if timing_index is None:
            continue

        start_raw, _, rest = lines[timing_index].partition("-->")
        end_raw = rest.strip().split(" ")[0]
        try:
            start = parse_timestamp(start_raw)
            end = parse_timestamp(end_raw)
        except ValueError:
            continue

        text = _clean(" ".join(lines[timing_index + 1 :]))
        if not text:
            continue

        segments.append(
            TranscriptSegment(text=text, start=max(0.0, start), end=max(start, end))
        )

    return segments
