"""Pydantic schemas for chat sessions, messages and usage records."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ModelTier(str, Enum):
    """Completion tiers: a cheaper, faster model and a stronger, slower one."""

    FAST = "fast"
    STRONG = "strong"


class UsageOperation(str, Enum):
    COMPLETION = "completion"
    EMBEDDING = "embedding"
    TRANSCRIPTION = "transcription"
    TITLE = "title"


class VideoReference(BaseModel):
    """Citation on an assistant message: a video and a moment in it."""

    video_id: str
    video_title: str = ""
    timestamp: float
    snippet: str = ""


class ChatSession(BaseModel):
    """Conversation between one requester and a tenant's video library.

    ``updated_at`` tracks the last activity and drives session reuse.
    Archiving is a soft delete; archived sessions are never reused.
    """

    id: str
    tenant_id: str
    requester_id: str
    anchor_video_id: str | None = None
    title: str | None = None
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChatMessage(BaseModel):
    """Immutable chat message. Only assistant messages carry references."""

    id: str
    session_id: str
    tenant_id: str
    role: MessageRole
    content: str
    video_references: list[VideoReference] = Field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class UsageRecord(BaseModel):
    """One billable provider call with the rates applied at call time.

    Token rates are USD per million tokens; ``minute_rate`` is USD per minute
    of transcribed audio. Storing the applied rates lets historical costs be
    reproduced after the live price table changes.
    """

    id: str
    tenant_id: str
    operation: UsageOperation
    model: str
    tier: ModelTier | None = None
    price_version: str = ""
    session_id: str | None = None
    requester_id: str | None = None
    message_id: str | None = None
    video_id: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    minutes: float = 0.0
    input_rate: float = 0.0
    output_rate: float = 0.0
    minute_rate: float = 0.0
    cost_usd: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)

    def computed_cost(self) -> float:
        """Cost derived from the stored counts and stored rates."""
        return (
            self.input_tokens * self.input_rate / 1_000_000
            + self.output_tokens * self.output_rate / 1_000_000
            + self.minutes * self.minute_rate
        )


class ChatRequest(BaseModel):
    """Input of one chat turn."""

    tenant_id: str
    requester_id: str
    message: str
    session_id: str | None = None
    anchor_video_id: str | None = None
    tier: ModelTier = ModelTier.FAST


class ChatTurnResult(BaseModel):
    """Output of one chat turn."""

    session_id: str
    assistant_message: ChatMessage
    tier: ModelTier
    model: str
    cost_usd: float = 0.0
    passages_retrieved: int = 0
