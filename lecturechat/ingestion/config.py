"""Configuration module for the video ingestion pipeline."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()


class IngestionConfig(BaseModel):
    """Configuration for the ingestion pipeline.

    Covers transcript providers, chunking, embedding, retry/timeout budgets,
    the worker pool and the Supabase persistence layer. Every setting can be
    overridden via environment variables.
    """

    # Free caption providers
    supadata_api_key: str = Field(
        default_factory=lambda: os.getenv("SUPADATA_API_KEY", "")
    )
    loom_api_key: str = Field(default_factory=lambda: os.getenv("LOOM_API_KEY", ""))
    vimeo_access_token: str = Field(
        default_factory=lambda: os.getenv("VIMEO_ACCESS_TOKEN", "")
    )
    mux_token_id: str = Field(default_factory=lambda: os.getenv("MUX_TOKEN_ID", ""))
    mux_token_secret: str = Field(
        default_factory=lambda: os.getenv("MUX_TOKEN_SECRET", "")
    )

    # Paid speech-to-text
    transcription_api_key: str = Field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY", "")
    )
    transcription_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "TRANSCRIPTION_BASE_URL", "https://api.openai.com/v1"
        )
    )
    transcription_model: str = Field(
        default_factory=lambda: os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
    )
    transcription_cost_per_minute: float = Field(
        default_factory=lambda: float(
            os.getenv("TRANSCRIPTION_COST_PER_MINUTE", "0.006")
        )
    )
    transcription_max_bytes: int = Field(
        default_factory=lambda: int(
            os.getenv("TRANSCRIPTION_MAX_BYTES", str(25 * 1024 * 1024))
        )
    )

    # Chunking settings (word-based)
    chunk_target_words: int = Field(
        default_factory=lambda: int(os.getenv("CHUNK_TARGET_WORDS", "500"))
    )
    chunk_overlap_words: int = Field(
        default_factory=lambda: int(os.getenv("CHUNK_OVERLAP_WORDS", "50"))
    )
    chunk_overlap_segments: int = Field(
        default_factory=lambda: int(os.getenv("CHUNK_OVERLAP_SEGMENTS", "2"))
    )

    # Embedding settings
    embedding_provider: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai")
    )
    embedding_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_BASE_URL", "https://api.openai.com/v1"
        )
    )
    embedding_api_key: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_API_KEY", "")
    )
    embedding_model: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL_CHOICE", "text-embedding-3-small"
        )
    )
    embedding_dimensions: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
    )
    embedding_batch_size: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_BATCH_SIZE", "100"))
    )
    embedding_requests_per_minute: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_REQUESTS_PER_MINUTE", "3000"))
    )

    # Retry and timeout budgets
    retry_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("RETRY_MAX_ATTEMPTS", "5"))
    )
    retry_base_seconds: float = Field(
        default_factory=lambda: float(os.getenv("RETRY_BASE_SECONDS", "2"))
    )
    caption_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CAPTION_TIMEOUT_SECONDS", "30"))
    )
    transcription_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("TRANSCRIPTION_TIMEOUT_SECONDS", "600"))
    )
    embedding_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))
    )

    # Worker pool
    worker_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("WORKER_CONCURRENCY", "5"))
    )
    job_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    )
    stuck_after_minutes: int = Field(
        default_factory=lambda: int(os.getenv("STUCK_AFTER_MINUTES", "30"))
    )

    # Database settings
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )
    storage_bucket: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_STORAGE_BUCKET", "videos")
    )

    @model_validator(mode="after")
    def _check_limits(self) -> "IngestionConfig":
        if self.chunk_target_words <= 0:
            raise ValueError("chunk_target_words must be positive")
        if not 0 <= self.chunk_overlap_words < self.chunk_target_words:
            raise ValueError("chunk_overlap_words must be in [0, chunk_target_words)")
        if self.embedding_batch_size <= 0:
            raise ValueError("embedding_batch_size must be positive")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        if self.worker_concurrency < 1:
            raise ValueError("worker_concurrency must be at least 1")
        return self


def get_config() -> IngestionConfig:
    """Get validated configuration instance.

    Returns:
        IngestionConfig: Validated configuration object with all settings.

    Raises:
        ValidationError: If environment variables hold invalid values.
    """
    return IngestionConfig()
