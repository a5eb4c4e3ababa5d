"""Client initialization utilities.

Builds the external service clients (Supabase, HTTP) and wires the
ingestion pipeline and the chat engine from configuration.
"""

import httpx
from supabase import Client, create_client

from lecturechat.chat.completion_service import CompletionService
from lecturechat.chat.config import ChatConfig, get_chat_config
from lecturechat.chat.deps import ChatDeps
from lecturechat.chat.engine import ChatEngine
from lecturechat.chat.sessions import SessionService
from lecturechat.chat.titles import TitleService
from lecturechat.ingestion.config import IngestionConfig
from lecturechat.ingestion.embedding_service import EmbeddingService
from lecturechat.ingestion.pipeline import IngestionPipeline
from lecturechat.ingestion.transcription import build_providers
from lecturechat.ledger import PriceTable, load_price_table
from lecturechat.storage.repository import Repository
from lecturechat.storage.vector_index import VectorIndex


def get_supabase_client(config: IngestionConfig) -> Client:
    """Create a Supabase client from configuration.

    Raises:
        ValueError: If SUPABASE_URL or SUPABASE_SERVICE_KEY is missing.
    """
    if not config.supabase_url or not config.supabase_key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables are required"
        )
    return create_client(config.supabase_url, config.supabase_key)


def get_http_client(config: IngestionConfig) -> httpx.AsyncClient:
    """Shared HTTP client for caption providers and media downloads.

    Per-call deadlines are enforced by the adapters, so the client timeout
    only needs to cover the longest download.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.transcription_timeout_seconds, connect=10.0),
        follow_redirects=True,
    )


def build_ingestion_pipeline(
    config: IngestionConfig,
    repository: Repository,
    http_client: httpx.AsyncClient,
    supabase: Client | None = None,
    embedding_service: EmbeddingService | None = None,
    price_table: PriceTable | None = None,
) -> IngestionPipeline:
    """Wire every adapter, the embedding client and the repository together."""
    return IngestionPipeline(
        config=config,
        repository=repository,
        providers=build_providers(config, http_client, storage=supabase),
        embedding_service=embedding_service or EmbeddingService(config),
        price_table=price_table,
    )


def build_chat_engine(
    repository: Repository,
    embedding_service: EmbeddingService,
    chat_config: ChatConfig | None = None,
    price_table: PriceTable | None = None,
) -> ChatEngine:
    """Wire the chat engine with its session, title and completion services."""
    chat_config = chat_config or get_chat_config()
    price_table = price_table or load_price_table()

    deps = ChatDeps(
        repository=repository,
        vector_index=VectorIndex(repository),
        embedding_service=embedding_service,
        price_table=price_table,
    )
    return ChatEngine(
        deps=deps,
        config=chat_config,
        completion=CompletionService(chat_config),
        sessions=SessionService(repository, chat_config),
        titles=TitleService(repository, chat_config, price_table),
    )
