"""Tenant chat analytics.

Pure reductions over persisted sessions, messages and usage records, plus
``get_analytics`` which loads the records of a period and applies them.
"""

import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from lecturechat.errors import ValidationFailed
from lecturechat.ledger import CostSummary, aggregate_costs
from lecturechat.storage.repository import Repository

from .schemas import ChatMessage, ChatSession, MessageRole, utcnow

PERIODS: dict[str, int | None] = {
    "day": 1,
    "week": 7,
    "month": 30,
    "all": None,
}

TOP_VIDEOS = 10
TOP_TOPICS = 20
MIN_TOPIC_LENGTH = 4

STOP_WORDS = frozenset(
    """
    the be to of and a in that have i it for not on with he as you do at this
    but his by from they we say her she or an will my one all would there their
    what so up out if about who get which go me when make can like time no just
    him know take people into year your good some could them see other than
    then now look only come its over think also back after use two how our work
    first well way even new want because any these give day most us
    """.split()
)

_PUNCTUATION = re.compile(r"[^\w\s]")


class ReferencedVideo(BaseModel):
    video_id: str
    video_title: str = ""
    reference_count: int
    unique_sessions: int


class Topic(BaseModel):
    keyword: str
    count: int


class ChatAnalytics(BaseModel):
    """Aggregate chat metrics for one tenant and period."""

    tenant_id: str
    period: str
    since: datetime | None = None
    total_sessions: int = 0
    total_messages: int = 0
    user_messages: int = 0
    average_session_duration_seconds: float = 0.0
    most_referenced_videos: list[ReferencedVideo] = Field(default_factory=list)
    topics: list[Topic] = Field(default_factory=list)
    peak_hours: list[int] = Field(default_factory=lambda: [0] * 24)
    costs: CostSummary = Field(default_factory=CostSummary)


def session_durations(messages: list[ChatMessage]) -> dict[str, float]:
    """Seconds between the first and last message of each session."""
    first: dict[str, datetime] = {}
    last: dict[str, datetime] = {}
    for message in messages:
        sid = message.session_id
        if sid not in first or message.created_at < first[sid]:
            first[sid] = message.created_at
        if sid not in last or message.created_at > last[sid]:
            last[sid] = message.created_at
    return {sid: (last[sid] - first[sid]).total_seconds() for sid in first}


def most_referenced_videos(
    messages: list[ChatMessage], limit: int = TOP_VIDEOS
) -> list[ReferencedVideo]:
    counts: Counter[str] = Counter()
    sessions: dict[str, set[str]] = defaultdict(set)
    titles: dict[str, str] = {}

    for message in messages:
        if message.role is not MessageRole.ASSISTANT:
            continue
        for reference in message.video_references:
            counts[reference.video_id] += 1
            sessions[reference.video_id].add(message.session_id)
            titles.setdefault(reference.video_id, reference.video_title)

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        ReferencedVideo(
            video_id=video_id,
            video_title=titles[video_id],
            reference_count=count,
            unique_sessions=len(sessions[video_id]),
        )
        for video_id, count in ranked[:limit]
    ]


def extract_topics(messages: list[ChatMessage], limit: int = TOP_TOPICS) -> list[Topic]:
    """Keyword frequency over user messages, stop words excluded.

    Examples:
        >>> from lecturechat.chat.schemas import ChatMessage, MessageRole
        >>> msg = ChatMessage(id="1", session_id="s", tenant_id="t",
        ...                   role=MessageRole.USER, content="Explain gradient descent")
        >>> [t.keyword for t in extract_topics([msg])]
        ['explain', 'gradient', 'descent']
    """
    counts: Counter[str] = Counter()
    for message in messages:
        if message.role is not MessageRole.USER:
            continue
        words = _PUNCTUATION.sub(" ", message.content.lower()).split()
        counts.update(
            w for w in words if len(w) >= MIN_TOPIC_LENGTH and w not in STOP_WORDS
        )
    return [Topic(keyword=word, count=count) for word, count in counts.most_common(limit)]


def peak_hours(messages: list[ChatMessage]) -> list[int]:
    """24-bucket histogram of user-message hour of day (UTC)."""
    histogram = [0] * 24
    for message in messages:
        if message.role is MessageRole.USER:
            histogram[message.created_at.hour] += 1
    return histogram


def period_start(period: str, now: datetime) -> datetime | None:
    if period not in PERIODS:
        raise ValidationFailed(
            f"Invalid period {period!r}; expected one of {', '.join(PERIODS)}"
        )
    days = PERIODS[period]
    return None if days is None else now - timedelta(days=days)


def summarize(
    tenant_id: str,
    period: str,
    since: datetime | None,
    sessions: list[ChatSession],
    messages: list[ChatMessage],
    usage_costs: CostSummary,
) -> ChatAnalytics:
    durations = session_durations(messages)
    active = [sid for sid, seconds in durations.items() if seconds > 0]
    average = sum(durations[sid] for sid in active) / len(active) if active else 0.0

    return ChatAnalytics(
        tenant_id=tenant_id,
        period=period,
        since=since,
        total_sessions=len(sessions),
        total_messages=len(messages),
        user_messages=sum(1 for m in messages if m.role is MessageRole.USER),
        average_session_duration_seconds=average,
        most_referenced_videos=most_referenced_videos(messages),
        topics=extract_topics(messages),
        peak_hours=peak_hours(messages),
        costs=usage_costs,
    )


async def get_analytics(
    repository: Repository,
    tenant_id: str,
    period: str = "week",
    now: datetime | None = None,
) -> ChatAnalytics:
    """Compute chat analytics of ``tenant_id`` over ``period``.

    Raises:
        ValidationFailed: Unknown period.
    """
    now = now or utcnow()
    since = period_start(period, now)

    sessions = await repository.list_sessions(tenant_id, include_archived=True)
    if since is not None:
        sessions = [s for s in sessions if s.created_at >= since]

    messages = await repository.list_tenant_messages(tenant_id, since=since)
    records = await repository.list_usage_records(tenant_id, since=since)

    return summarize(tenant_id, period, since, sessions, messages, aggregate_costs(records))
