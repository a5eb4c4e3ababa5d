"""RAG chat engine: one grounded, cited turn per call."""

import uuid
from collections.abc import Callable
from datetime import datetime

from lecturechat.errors import PipelineError, ValidationFailed
from lecturechat.ingestion.schemas import ChunkMatch
from lecturechat.utils.logging import get_logger

from .agent import build_user_prompt, to_model_history
from .citations import extract_references
from .completion_service import CompletionResult, CompletionService
from .config import ChatConfig, get_model_name
from .context import build_grounding_context
from .deps import ChatDeps
from .schemas import (
    ChatMessage,
    ChatRequest,
    ChatSession,
    ChatTurnResult,
    MessageRole,
    UsageOperation,
    UsageRecord,
    utcnow,
)
from .sessions import SessionService
from .titles import TitleService

logger = get_logger(__name__)

FALLBACK_ANSWER = (
    "I'm sorry, I couldn't generate an answer right now. Please try again in a moment."
)


class ChatEngine:
    """Drive a chat turn from question to persisted, cited answer.

    Turns within one session are serialized. Retrieval or completion
    failures never fail the turn: an empty retrieval still gets an answer and
    a failed completion gets a fallback message.
    """

    def __init__(
        self,
        deps: ChatDeps,
        config: ChatConfig,
        completion: CompletionService,
        sessions: SessionService,
        titles: TitleService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.deps = deps
        self.config = config
        self.completion = completion
        self.sessions = sessions
        self.titles = titles
        self.clock = clock

    async def chat(self, request: ChatRequest) -> ChatTurnResult:
        """Answer one learner message.

        Raises:
            ValidationFailed: Empty message or unusable session id.
        """
        question = request.message.strip()
        if not question:
            raise ValidationFailed("Message cannot be empty")

        session = await self.sessions.resolve_session(
            request.tenant_id,
            request.requester_id,
            session_id=request.session_id,
            anchor_video_id=request.anchor_video_id,
        )

        async with self.sessions.lock_for(f"session:{session.id}"):
            return await self._turn(session, request, question)

    async def _turn(
        self, session: ChatSession, request: ChatRequest, question: str
    ) -> ChatTurnResult:
        repository = self.deps.repository
        history = await repository.list_messages(session.id, limit=self.config.history_limit)

        user_message = await repository.add_message(
            ChatMessage(
                id=str(uuid.uuid4()),
                session_id=session.id,
                tenant_id=session.tenant_id,
                role=MessageRole.USER,
                content=question,
                created_at=self.clock(),
            )
        )

        usage: list[UsageRecord] = []
        anchor = request.anchor_video_id or session.anchor_video_id
        matches = await self._retrieve(session, question, anchor, usage)

        prompt = build_user_prompt(question, build_grounding_context(matches))
        try:
            completion = await self.completion.complete(
                prompt, history=to_model_history(history), tier=request.tier
            )
        except PipelineError as e:
            logger.error(
                "chat_completion_failed",
                session_id=session.id,
                error_type=type(e).__name__,
                error=e.message,
            )
            completion = CompletionResult(
                content=FALLBACK_ANSWER,
                input_tokens=0,
                output_tokens=0,
                model=get_model_name(request.tier),
                tier=request.tier,
            )
            references = []
        else:
            references = extract_references(completion.content, matches)

        assistant_message = await repository.add_message(
            ChatMessage(
                id=str(uuid.uuid4()),
                session_id=session.id,
                tenant_id=session.tenant_id,
                role=MessageRole.ASSISTANT,
                content=completion.content,
                video_references=references,
                input_tokens=completion.input_tokens,
                output_tokens=completion.output_tokens,
                model=completion.model,
                created_at=self.clock(),
            )
        )

        if completion.input_tokens or completion.output_tokens:
            usage.append(
                self.deps.price_table.usage_record(
                    tenant_id=session.tenant_id,
                    operation=UsageOperation.COMPLETION,
                    model=completion.model,
                    input_tokens=completion.input_tokens,
                    output_tokens=completion.output_tokens,
                    tier=completion.tier,
                )
            )

        cost = 0.0
        for record in usage:
            record.session_id = session.id
            record.requester_id = session.requester_id
            record.message_id = assistant_message.id
            await repository.add_usage_record(record)
            cost += record.cost_usd

        await repository.touch_session(session.id, assistant_message.created_at)

        if not session.title:
            first_question = next(
                (m.content for m in history if m.role is MessageRole.USER), user_message.content
            )
            self.titles.schedule(session, first_question)

        logger.info(
            "chat_turn_completed",
            session_id=session.id,
            tier=completion.tier.value,
            passages=len(matches),
            references=len(references),
            cost_usd=round(cost, 6),
        )
        return ChatTurnResult(
            session_id=session.id,
            assistant_message=assistant_message,
            tier=completion.tier,
            model=completion.model,
            cost_usd=cost,
            passages_retrieved=len(matches),
        )

    async def _retrieve(
        self,
        session: ChatSession,
        question: str,
        anchor_video_id: str | None,
        usage: list[UsageRecord],
    ) -> list[ChunkMatch]:
        """Embed the question and search the tenant's chunks.

        Failures degrade to an empty result; the turn is still answered.
        """
        try:
            embedded = await self.deps.embedding_service.embed_query(question)
        except PipelineError as e:
            logger.warning(
                "chat_query_embedding_failed",
                session_id=session.id,
                error_type=type(e).__name__,
            )
            return []

        usage.append(
            self.deps.price_table.usage_record(
                tenant_id=session.tenant_id,
                operation=UsageOperation.EMBEDDING,
                model=embedded.model,
                input_tokens=embedded.tokens_used,
            )
        )

        try:
            return await self.deps.vector_index.search(
                session.tenant_id,
                embedded.embeddings[0],
                k=self.config.top_k,
                similarity_floor=self.config.similarity_floor,
                boost_video_id=anchor_video_id,
                boost=self.config.anchor_boost,
            )
        except PipelineError as e:
            logger.warning(
                "chat_retrieval_failed",
                session_id=session.id,
                error_type=type(e).__name__,
            )
            return []
