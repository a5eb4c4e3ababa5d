"""Completion client: runs the grounded agent with retries and usage reporting."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import openai
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.messages import ModelMessage
from pydantic_ai.models import Model
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lecturechat.errors import (
    PipelineError,
    ProviderPermanent,
    ProviderTransient,
    RateLimited,
    TransientNetwork,
    classify_openai_error,
)
from lecturechat.utils.logging import get_logger

from .agent import chat_agent
from .config import ChatConfig, get_model, get_model_name
from .schemas import ModelTier

logger = get_logger(__name__)

PROVIDER = "completion"


@dataclass
class CompletionResult:
    content: str
    input_tokens: int
    output_tokens: int
    model: str
    tier: ModelTier


def classify_completion_error(error: Exception) -> PipelineError:
    """Map agent/model failures onto the failure taxonomy."""
    if isinstance(error, PipelineError):
        return error
    if isinstance(error, ModelHTTPError):
        if error.status_code == 429:
            return RateLimited("Model rate limit exceeded", PROVIDER)
        if error.status_code >= 500 or error.status_code == 408:
            return TransientNetwork(f"Model server error ({error.status_code})", PROVIDER)
        return ProviderPermanent(f"Model rejected request ({error.status_code})", PROVIDER)
    if isinstance(error, openai.OpenAIError):
        return classify_openai_error(error, PROVIDER)
    if isinstance(error, (httpx.TransportError, TimeoutError)):
        return TransientNetwork(f"Network error: {type(error).__name__}", PROVIDER)
    if isinstance(error, UnexpectedModelBehavior):
        return TransientNetwork("Model returned an unusable response", PROVIDER)
    return ProviderPermanent(f"Completion failed: {type(error).__name__}", PROVIDER)


class CompletionService:
    """Run the chat agent on a chosen tier.

    Transient failures are retried with exponential backoff; every failure
    that escapes is a classified ``PipelineError``.
    """

    def __init__(
        self,
        config: ChatConfig,
        agent: Agent = chat_agent,
        model_factory: Callable[[ModelTier], Model | str] = get_model,
    ):
        self.config = config
        self.agent = agent
        self.model_factory = model_factory

    async def complete(
        self,
        prompt: str,
        history: list[ModelMessage] | None = None,
        tier: ModelTier = ModelTier.FAST,
    ) -> CompletionResult:
        """Generate an answer for ``prompt`` given prior conversation turns.

        Raises:
            ProviderTransient: Retries exhausted.
            ProviderPermanent: The model provider rejected the call.
        """
        model = self.model_factory(tier)
        model_name = getattr(model, "model_name", None) or get_model_name(tier)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderTransient),
            stop=stop_after_attempt(self.config.completion_max_attempts),
            wait=wait_exponential(multiplier=self.config.completion_retry_base_seconds, max=20),
            reraise=True,
        ):
            with attempt:
                try:
                    result = await asyncio.wait_for(
                        self.agent.run(prompt, message_history=history or [], model=model),
                        timeout=self.config.completion_timeout_seconds,
                    )
                except Exception as e:
                    error = classify_completion_error(e)
                    logger.warning(
                        "completion_attempt_failed",
                        attempt=attempt.retry_state.attempt_number,
                        tier=tier.value,
                        error_type=type(e).__name__,
                        classified=type(error).__name__,
                    )
                    raise error from e

        usage = result.usage()
        logger.info(
            "completion_generated",
            tier=tier.value,
            model=model_name,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        return CompletionResult(
            content=str(result.output),
            input_tokens=usage.input_tokens or 0,
            output_tokens=usage.output_tokens or 0,
            model=model_name,
            tier=tier,
        )
