"""Lazy, single-flight session title generation."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic_ai import Agent
from pydantic_ai.models import Model

from lecturechat.ledger import PriceTable
from lecturechat.storage.repository import Repository
from lecturechat.utils.logging import get_logger

from .agent import title_agent
from .config import ChatConfig, get_model, get_model_name
from .schemas import ChatSession, ModelTier, UsageOperation, utcnow

logger = get_logger(__name__)


def fallback_title(created_at: datetime) -> str:
    """Title used while generation is pending or after it failed.

    Examples:
        >>> fallback_title(datetime(2026, 10, 17))
        'Chat from Oct 17, 2026'
    """
    return f"Chat from {created_at:%b} {created_at.day}, {created_at.year}"


def display_title(session: ChatSession) -> str:
    return session.title or fallback_title(session.created_at)


def clean_title(raw: str, max_chars: int) -> str:
    title = " ".join(raw.strip().strip("\"'").split()).rstrip(".!?")
    if len(title) > max_chars:
        title = title[:max_chars].rsplit(" ", 1)[0]
    return title


class TitleService:
    """Generate session titles in the background, at most once at a time.

    One task per session runs at a time. After a failure the session is
    kept in a negative cache for ``title_retry_after_seconds`` so later turns
    do not immediately retry; until then ``display_title`` shows the
    fallback.
    """

    def __init__(
        self,
        repository: Repository,
        config: ChatConfig,
        price_table: PriceTable,
        agent: Agent = title_agent,
        model_factory: Callable[[ModelTier], Model | str] = get_model,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.config = config
        self.price_table = price_table
        self.agent = agent
        self.model_factory = model_factory
        self.clock = clock
        self._inflight: dict[str, asyncio.Task] = {}
        self._failed_at: dict[str, datetime] = {}

    @property
    def retry_after(self) -> timedelta:
        return timedelta(seconds=self.config.title_retry_after_seconds)

    def schedule(self, session: ChatSession, first_message: str) -> asyncio.Task | None:
        """Start title generation unless a title exists or is being made.

        Called on every untitled turn, so a session whose generation failed
        is retried once its negative-cache entry has expired.
        """
        if session.title:
            return None
        if session.id in self._inflight:
            return self._inflight[session.id]

        self._prune_failures()
        if session.id in self._failed_at:
            return None

        task = asyncio.create_task(self.generate(session, first_message))
        self._inflight[session.id] = task
        task.add_done_callback(lambda _: self._inflight.pop(session.id, None))
        return task

    def _prune_failures(self) -> None:
        cutoff = self.clock() - self.retry_after
        for session_id in [s for s, at in self._failed_at.items() if at <= cutoff]:
            del self._failed_at[session_id]

    async def wait_for_pending(self) -> None:
        """Wait for every in-flight title task (used on shutdown and in tests)."""
        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

    async def generate(self, session: ChatSession, first_message: str) -> str | None:
        current = await self.repository.get_session(session.id)
        if current is not None and current.title:
            return current.title

        model = self.model_factory(ModelTier.FAST)
        model_name = getattr(model, "model_name", None) or get_model_name(ModelTier.FAST)

        try:
            result = await self.agent.run(first_message, model=model)
            title = clean_title(str(result.output), self.config.title_max_chars)
            if not title:
                raise ValueError("empty title")
        except Exception as e:
            self._failed_at[session.id] = self.clock()
            logger.warning(
                "conversation_title_generation_failed",
                session_id=session.id,
                error_type=type(e).__name__,
            )
            return None

        self._failed_at.pop(session.id, None)
        await self.repository.set_session_title(session.id, title)

        usage = result.usage()
        await self.repository.add_usage_record(
            self.price_table.usage_record(
                tenant_id=session.tenant_id,
                operation=UsageOperation.TITLE,
                model=model_name,
                input_tokens=usage.input_tokens or 0,
                output_tokens=usage.output_tokens or 0,
                tier=ModelTier.FAST,
                session_id=session.id,
                requester_id=session.requester_id,
            )
        )
        logger.info("conversation_title_generated", session_id=session.id, title=title)
        return title
