"""FastAPI application for Lecture Chat.

Exposes ingestion requests, cancellation and stuck-job recovery, chat turns,
session export and archiving, and tenant analytics behind Supabase JWT
authentication.
"""

import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from lecturechat.chat.analytics import ChatAnalytics, get_analytics
from lecturechat.chat.engine import ChatEngine
from lecturechat.chat.export import export_session
from lecturechat.chat.schemas import ChatRequest, ChatTurnResult, ModelTier
from lecturechat.errors import ValidationFailed
from lecturechat.ingestion.config import get_config
from lecturechat.ingestion.embedding_service import EmbeddingService
from lecturechat.ingestion.worker import IngestionWorkerPool
from lecturechat.ledger import load_price_table
from lecturechat.storage.repository import Repository
from lecturechat.storage.storage_service import StorageService
from lecturechat.utils.clients import (
    build_chat_engine,
    build_ingestion_pipeline,
    get_http_client,
    get_supabase_client,
)
from lecturechat.utils.logging import get_logger

logger = get_logger(__name__)

# Global services initialized in lifespan
repository: Repository | None = None
http_client = None
worker_pool: IngestionWorkerPool | None = None
chat_engine: ChatEngine | None = None


# ==============================================================================
# Lifespan Management
# ==============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI application.

    Builds the repository, the ingestion worker pool and the chat engine,
    starts the workers, and tears everything down on shutdown.
    """
    global repository, http_client, worker_pool, chat_engine

    logger.info("application_startup_started")

    try:
        config = get_config()
        supabase = get_supabase_client(config)
        http_client = get_http_client(config)
        repository = StorageService(config, client=supabase)
        embedding_service = EmbeddingService(config)
        price_table = load_price_table()

        pipeline = build_ingestion_pipeline(
            config,
            repository,
            http_client,
            supabase=supabase,
            embedding_service=embedding_service,
            price_table=price_table,
        )
        worker_pool = IngestionWorkerPool(pipeline, repository, config)
        chat_engine = build_chat_engine(repository, embedding_service, price_table=price_table)
        await worker_pool.start()

        logger.info(
            "application_startup_completed",
            services=["repository", "http", "worker_pool", "chat_engine"],
            workers=config.worker_concurrency,
        )

    except Exception:
        logger.exception("application_startup_failed")
        raise

    yield  # Application runs here

    logger.info("application_shutdown_started")

    if worker_pool:
        await worker_pool.stop()
    if chat_engine:
        await chat_engine.titles.wait_for_pending()
    if http_client:
        await http_client.aclose()

    logger.info("application_shutdown_completed")


# ==============================================================================
# FastAPI Application Setup
# ==============================================================================

app = FastAPI(
    title="Lecture Chat API",
    description="Lecture video ingestion and cited, retrieval-augmented chat",
    version="0.1.0",
    lifespan=lifespan,
)

security = HTTPBearer()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==============================================================================
# Authentication
# ==============================================================================


async def verify_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
) -> dict[str, Any]:
    """Verify the JWT token from Supabase and return the user information.

    Raises:
        HTTPException: If the token is invalid or the user cannot be verified.
    """
    try:
        token = credentials.credentials

        if not http_client:
            logger.error("auth_verification_failed", reason="http_client_not_initialized")
            raise HTTPException(status_code=500, detail="HTTP client not initialized")

        supabase_url = os.getenv("SUPABASE_URL")
        supabase_key = os.getenv("SUPABASE_SERVICE_KEY")

        response = await http_client.get(
            f"{supabase_url}/auth/v1/user",
            headers={"Authorization": f"Bearer {token}", "apikey": supabase_key},
        )

        if response.status_code != 200:
            logger.warning(
                "auth_verification_failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise HTTPException(status_code=401, detail="Invalid authentication token")

        return response.json()

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("auth_verification_error")
        raise HTTPException(status_code=401, detail=f"Authentication error: {str(e)}")


def tenant_of(user: dict[str, Any]) -> str:
    """Tenant the authenticated user acts for.

    Identity and tenancy are managed externally; the tenant id is read from
    the user's app metadata and defaults to the user's own id.
    """
    metadata = user.get("app_metadata") or {}
    return metadata.get("tenant_id") or user["id"]


def get_repository() -> Repository:
    if repository is None:
        raise HTTPException(status_code=503, detail="Repository not initialized")
    return repository


def get_worker_pool() -> IngestionWorkerPool:
    if worker_pool is None:
        raise HTTPException(status_code=503, detail="Ingestion workers not initialized")
    return worker_pool


def get_chat_engine() -> ChatEngine:
    if chat_engine is None:
        raise HTTPException(status_code=503, detail="Chat engine not initialized")
    return chat_engine


async def get_owned_video(video_id: str, user: dict[str, Any], repo: Repository):
    video = await repo.get_video(video_id)
    if video is None or video.tenant_id != tenant_of(user):
        raise HTTPException(status_code=404, detail="Video not found")
    return video


# ==============================================================================
# Request/Response Models
# ==============================================================================


class IngestRequest(BaseModel):
    force_resync: bool = False


class IngestResponse(BaseModel):
    video_id: str
    outcome: str


class ChatBody(BaseModel):
    """Request model for the chat endpoint."""

    message: str
    session_id: str | None = None
    anchor_video_id: str | None = None
    tier: ModelTier = ModelTier.FAST


# ==============================================================================
# API Endpoints
# ==============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": {
            "repository": repository is not None,
            "http_client": http_client is not None,
            "worker_pool": worker_pool is not None and worker_pool.running,
            "chat_engine": chat_engine is not None,
        },
    }


@app.post("/api/videos/{video_id}/ingest", response_model=IngestResponse)
async def request_ingestion(
    video_id: str,
    body: IngestRequest | None = None,
    user: dict[str, Any] = Depends(verify_token),
    repo: Repository = Depends(get_repository),
    pool: IngestionWorkerPool = Depends(get_worker_pool),
):
    """Enqueue a video that the import flow has already inserted."""
    await get_owned_video(video_id, user, repo)
    force_resync = body.force_resync if body else False
    outcome = await pool.request_ingestion(video_id, force_resync=force_resync)
    logger.info("ingestion_requested", video_id=video_id, outcome=outcome)
    return IngestResponse(video_id=video_id, outcome=outcome)


@app.post("/api/videos/{video_id}/cancel")
async def cancel_ingestion(
    video_id: str,
    user: dict[str, Any] = Depends(verify_token),
    repo: Repository = Depends(get_repository),
    pool: IngestionWorkerPool = Depends(get_worker_pool),
):
    await get_owned_video(video_id, user, repo)
    cancelled = await pool.cancel_ingestion(video_id)
    return {"video_id": video_id, "cancelled": cancelled}


@app.post("/api/admin/recover-stuck")
async def recover_stuck_videos(
    user: dict[str, Any] = Depends(verify_token),
    pool: IngestionWorkerPool = Depends(get_worker_pool),
):
    """Reset and requeue videos stuck in an in-flight state."""
    recovered = await pool.recover_stuck_videos()
    logger.info("stuck_recovery_requested", user_id=user.get("id"), count=len(recovered))
    return {"recovered": recovered}


@app.post("/api/chat", response_model=ChatTurnResult)
async def chat(
    body: ChatBody,
    user: dict[str, Any] = Depends(verify_token),
    engine: ChatEngine = Depends(get_chat_engine),
):
    """Answer one learner message with cited video references."""
    logger.info(
        "chat_request_started",
        user_id=user.get("id"),
        session_id=body.session_id,
        message_length=len(body.message),
    )
    request = ChatRequest(
        tenant_id=tenant_of(user),
        requester_id=user["id"],
        message=body.message,
        session_id=body.session_id,
        anchor_video_id=body.anchor_video_id,
        tier=body.tier,
    )
    try:
        return await engine.chat(request)
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=e.message)


@app.get("/api/sessions/{session_id}/export")
async def export_chat_session(
    session_id: str,
    format: str = Query("json", pattern="^(json|markdown)$"),
    user: dict[str, Any] = Depends(verify_token),
    repo: Repository = Depends(get_repository),
):
    try:
        content = await export_session(repo, session_id, format, tenant_id=tenant_of(user))
    except ValidationFailed as e:
        raise HTTPException(status_code=404, detail=e.message)

    if format == "markdown":
        media_type, extension = "text/markdown", "md"
    else:
        media_type, extension = "application/json", "json"
    return Response(
        content=content,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="session-{session_id}.{extension}"'
        },
    )


@app.post("/api/sessions/{session_id}/archive")
async def archive_session(
    session_id: str,
    user: dict[str, Any] = Depends(verify_token),
    engine: ChatEngine = Depends(get_chat_engine),
):
    try:
        session = await engine.sessions.archive_session(
            session_id, tenant_of(user), requester_id=user["id"]
        )
    except ValidationFailed as e:
        raise HTTPException(status_code=404, detail=e.message)
    return {"session_id": session.id, "archived": session.archived}


@app.get("/api/analytics", response_model=ChatAnalytics)
async def analytics(
    period: str = Query("week"),
    user: dict[str, Any] = Depends(verify_token),
    repo: Repository = Depends(get_repository),
):
    try:
        return await get_analytics(repo, tenant_of(user), period)
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=e.message)
