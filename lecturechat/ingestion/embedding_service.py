"""Embedding service for generating text embeddings via OpenAI-compatible APIs."""

import asyncio
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lecturechat.errors import (
    ProviderTransient,
    TransientNetwork,
    ValidationFailed,
    classify_openai_error,
)
from lecturechat.utils.logging import get_logger

from .config import IngestionConfig

logger = get_logger(__name__)

PROVIDER = "embedding"


@dataclass
class EmbeddingResult:
    """Vectors for a list of texts, in input order, plus token usage."""

    embeddings: list[list[float]]
    tokens_used: int
    model: str


class EmbeddingService:
    """Service for generating text embeddings.

    Supports OpenAI, Ollama and OpenRouter through OpenAI-compatible APIs.
    Texts are sent in batches no larger than the provider ceiling, with a
    delay between batches that keeps the request rate under the configured
    requests-per-minute limit. When a batch comes back incomplete only the
    missing items are re-requested.
    """

    def __init__(self, config: IngestionConfig, client: AsyncOpenAI | None = None):
        """Initialize embedding service with configuration.

        Args:
            config: Configuration object with embedding provider settings.
            client: Optional pre-built OpenAI-compatible client.
        """
        self.config = config
        self.client = client or self._get_client()
        logger.info(
            "embedding_service_initialized",
            provider=config.embedding_provider,
            model=config.embedding_model,
            base_url=config.embedding_base_url,
        )

    def _get_client(self) -> AsyncOpenAI:
        if self.config.embedding_provider == "ollama":
            # Ollama doesn't require a real API key
            return AsyncOpenAI(
                base_url=self.config.embedding_base_url,
                api_key="ollama",
            )
        return AsyncOpenAI(
            base_url=self.config.embedding_base_url,
            api_key=self.config.embedding_api_key,
        )

    @property
    def batch_delay_seconds(self) -> float:
        return 60.0 / max(self.config.embedding_requests_per_minute, 1)

    async def embed_query(self, text: str) -> EmbeddingResult:
        """Embed a single search query."""
        if not text.strip():
            raise ValidationFailed("Cannot embed an empty query", PROVIDER)
        return await self.embed_texts([text])

    async def embed_texts(self, texts: list[str]) -> EmbeddingResult:
        """Generate embeddings for many texts, preserving order.

        Args:
            texts: Texts to embed, typically one video's chunk texts.

        Returns:
            EmbeddingResult with one vector per input text.

        Raises:
            ProviderTransient: Retries exhausted for a batch.
            ProviderPermanent: The provider rejected the request.
        """
        batch_size = self.config.embedding_batch_size
        embeddings: list[list[float]] = []
        tokens = 0

        logger.info(
            "batch_embedding_started",
            count=len(texts),
            batch_size=batch_size,
        )

        for start in range(0, len(texts), batch_size):
            if start:
                await asyncio.sleep(self.batch_delay_seconds)

            batch = texts[start : start + batch_size]
            batch_embeddings, batch_tokens = await self._embed_batch_with_retry(batch)
            embeddings.extend(batch_embeddings)
            tokens += batch_tokens

            logger.debug(
                "batch_completed",
                batch_num=start // batch_size + 1,
                count=len(batch),
            )

        logger.info(
            "batch_embedding_completed",
            total_embeddings=len(embeddings),
            tokens_used=tokens,
        )
        return EmbeddingResult(
            embeddings=embeddings,
            tokens_used=tokens,
            model=self.config.embedding_model,
        )

    async def _embed_batch_with_retry(
        self, batch: list[str]
    ) -> tuple[list[list[float]], int]:
        results: dict[int, list[float]] = {}
        tokens = 0

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderTransient),
            stop=stop_after_attempt(self.config.retry_max_attempts),
            wait=wait_exponential(multiplier=self.config.retry_base_seconds, max=60),
            reraise=True,
        ):
            with attempt:
                missing = [i for i in range(len(batch)) if i not in results]
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "embedding_batch_retry",
                        attempt=attempt.retry_state.attempt_number,
                        missing=len(missing),
                    )

                vectors, used = await self._request([batch[i] for i in missing])
                tokens += used
                for position, vector in vectors.items():
                    results[missing[position]] = vector

                still_missing = len(batch) - len(results)
                if still_missing:
                    raise TransientNetwork(
                        f"{still_missing} embeddings missing from batch response",
                        PROVIDER,
                    )

        return [results[i] for i in range(len(batch))], tokens

    async def _request(self, texts: list[str]) -> tuple[dict[int, list[float]], int]:
        """One provider call; returns vectors keyed by position in ``texts``."""
        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(
                    input=texts,
                    model=self.config.embedding_model,
                ),
                timeout=self.config.embedding_timeout_seconds,
            )
        except TimeoutError as e:
            raise TransientNetwork("Embedding request timed out", PROVIDER) from e
        except openai.OpenAIError as e:
            error = classify_openai_error(e, PROVIDER)
            logger.warning(
                "embedding_request_failed",
                count=len(texts),
                error_type=type(e).__name__,
                classified=type(error).__name__,
            )
            raise error from e

        vectors: dict[int, list[float]] = {}
        for item in response.data:
            if item.embedding and 0 <= item.index < len(texts):
                vectors[item.index] = list(item.embedding)

        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "prompt_tokens", 0) or 0
        return vectors, tokens
