"""Lecture chat agents.

Defines the grounded answering agent and the session-title agent. Models are
chosen per run so each turn can use the fast or the strong tier.
"""

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)

from .schemas import ChatMessage, MessageRole

# ==============================================================================
# Instructions
# ==============================================================================

CHAT_INSTRUCTIONS = """You are a teaching assistant for a library of lecture videos.

Answer the learner's question using ONLY the numbered sources supplied with the
question. Each source is a passage from one video, labelled with the video title
and the moment it starts.

## Citing
- After every claim taken from a source, add a marker of the form
  [Source N @ MM:SS] (or [Source N @ H:MM:SS] for long videos), where N is the
  source number and the timestamp is inside that source's time range.
- Only cite sources that actually support the sentence.
- Never invent sources, titles or timestamps.

## When the sources do not help
- If no sources are supplied, or none of them answers the question, say plainly
  that no relevant video content was found. You may then add brief general
  guidance, clearly marked as not coming from the videos.

## Style
- Start with a direct answer, then the supporting details.
- Keep paragraphs short; use bullet points for steps or lists.
"""

TITLE_INSTRUCTIONS = """Write a short title (at most six words) for a conversation
that starts with the learner message below. Reply with the title only, without
quotes or trailing punctuation."""

# ==============================================================================
# Agent Definitions
# ==============================================================================

chat_agent = Agent(instructions=CHAT_INSTRUCTIONS, retries=2)

title_agent = Agent(instructions=TITLE_INSTRUCTIONS)


def build_user_prompt(question: str, context: str) -> str:
    """Combine retrieved sources and the learner's question into one prompt."""
    return f"## Sources\n\n{context}\n\n## Question\n\n{question}"


def to_model_history(messages: list[ChatMessage]) -> list[ModelMessage]:
    """Convert stored chat messages into pydantic-ai message history."""
    history: list[ModelMessage] = []
    for message in messages:
        if message.role is MessageRole.USER:
            history.append(ModelRequest(parts=[UserPromptPart(content=message.content)]))
        else:
            history.append(ModelResponse(parts=[TextPart(content=message.content)]))
    return history
