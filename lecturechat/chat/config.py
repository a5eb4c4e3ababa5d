"""Chat configuration utilities.

Provides functions for loading the completion models of each tier and the
retrieval/session settings of the chat engine from environment variables.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from .schemas import ModelTier

# Check if we're in production
is_production = os.getenv("ENVIRONMENT") == "production"

if not is_production:
    # Development: prioritize .env file
    project_root = Path(__file__).resolve().parent.parent.parent
    dotenv_path = project_root / ".env"
    load_dotenv(dotenv_path, override=True)
else:
    # Production: use cloud platform env vars only
    load_dotenv()


DEFAULT_MODELS = {
    ModelTier.FAST: "gpt-4o-mini",
    ModelTier.STRONG: "gpt-4o",
}


def get_model_name(tier: ModelTier = ModelTier.FAST) -> str:
    """Get the model name configured for a completion tier.

    Reads LLM_CHOICE_FAST / LLM_CHOICE_STRONG, falling back to LLM_CHOICE
    for the fast tier.

    Examples:
        >>> get_model_name(ModelTier.STRONG)
        'gpt-4o'
    """
    if tier is ModelTier.STRONG:
        return os.getenv("LLM_CHOICE_STRONG") or DEFAULT_MODELS[ModelTier.STRONG]
    return (
        os.getenv("LLM_CHOICE_FAST")
        or os.getenv("LLM_CHOICE")
        or DEFAULT_MODELS[ModelTier.FAST]
    )


def get_model(tier: ModelTier = ModelTier.FAST) -> OpenAIChatModel:
    """Get the configured LLM model for a tier.

    Reads configuration from environment variables:
    - LLM_CHOICE_FAST / LLM_CHOICE_STRONG: Model names per tier
    - LLM_BASE_URL: API base URL (default: https://api.openai.com/v1)
    - LLM_API_KEY: API key (default: ollama for local testing)

    Returns:
        OpenAIChatModel configured with environment settings.
    """
    base_url = os.getenv("LLM_BASE_URL") or "https://api.openai.com/v1"
    api_key = os.getenv("LLM_API_KEY") or "ollama"

    return OpenAIChatModel(
        get_model_name(tier),
        provider=OpenAIProvider(base_url=base_url, api_key=api_key),
    )


class ChatConfig(BaseModel):
    """Retrieval, session and title settings of the chat engine."""

    top_k: int = Field(default_factory=lambda: int(os.getenv("CHAT_TOP_K", "5")))
    similarity_floor: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_SIMILARITY_FLOOR", "0.7"))
    )
    anchor_boost: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_ANCHOR_BOOST", "0.05"))
    )
    session_freshness_hours: float = Field(
        default_factory=lambda: float(os.getenv("SESSION_FRESHNESS_HOURS", "24"))
    )
    history_limit: int = Field(
        default_factory=lambda: int(os.getenv("CHAT_HISTORY_LIMIT", "10"))
    )
    completion_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("COMPLETION_MAX_ATTEMPTS", "3"))
    )
    completion_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("COMPLETION_TIMEOUT_SECONDS", "60"))
    )
    completion_retry_base_seconds: float = Field(
        default_factory=lambda: float(os.getenv("COMPLETION_RETRY_BASE_SECONDS", "1"))
    )
    title_max_chars: int = Field(
        default_factory=lambda: int(os.getenv("TITLE_MAX_CHARS", "60"))
    )
    title_retry_after_seconds: float = Field(
        default_factory=lambda: float(os.getenv("TITLE_RETRY_AFTER_SECONDS", "300"))
    )


def get_chat_config() -> ChatConfig:
    return ChatConfig()
