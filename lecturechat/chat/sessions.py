"""Chat session resolution, listing and archiving."""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from lecturechat.errors import ValidationFailed
from lecturechat.storage.repository import Repository
from lecturechat.utils.logging import get_logger

from .config import ChatConfig
from .schemas import ChatSession, utcnow

logger = get_logger(__name__)


class SessionNotFound(ValidationFailed):
    """Session id unknown, archived, or owned by someone else."""


class SessionService:
    """Resolve the session a chat turn belongs to.

    Without an explicit session id, the requester's most recently active
    non-archived session is reused while it is fresher than the configured
    window; otherwise a new session is created. Resolution is serialized per
    requester so two concurrent first turns cannot create two sessions, and
    ``lock_for`` serializes turns within one session.
    """

    def __init__(
        self,
        repository: Repository,
        config: ChatConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.config = config
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def freshness(self) -> timedelta:
        return timedelta(hours=self.config.session_freshness_hours)

    @asynccontextmanager
    async def lock_for(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key``; it is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def resolve_session(
        self,
        tenant_id: str,
        requester_id: str,
        session_id: str | None = None,
        anchor_video_id: str | None = None,
    ) -> ChatSession:
        """Return the session for this turn, creating one if needed.

        Raises:
            SessionNotFound: An explicit session id cannot be used.
        """
        if session_id:
            return await self.get_owned_session(session_id, tenant_id, requester_id)

        async with self.lock_for(f"requester:{tenant_id}:{requester_id}"):
            now = self.clock()
            latest = await self.repository.latest_session(tenant_id, requester_id)
            if latest is not None and now - latest.updated_at < self.freshness:
                logger.info("session_reused", session_id=latest.id, requester_id=requester_id)
                return latest

            session = ChatSession(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                requester_id=requester_id,
                anchor_video_id=anchor_video_id,
                created_at=now,
                updated_at=now,
            )
            await self.repository.create_session(session)
            logger.info(
                "session_created",
                session_id=session.id,
                requester_id=requester_id,
                anchor_video_id=anchor_video_id,
            )
            return session

    async def get_owned_session(
        self,
        session_id: str,
        tenant_id: str,
        requester_id: str | None = None,
        allow_archived: bool = False,
    ) -> ChatSession:
        session = await self.repository.get_session(session_id)
        if (
            session is None
            or session.tenant_id != tenant_id
            or (requester_id is not None and session.requester_id != requester_id)
            or (session.archived and not allow_archived)
        ):
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    async def list_sessions(
        self,
        tenant_id: str,
        requester_id: str | None = None,
        include_archived: bool = False,
    ) -> list[ChatSession]:
        return await self.repository.list_sessions(
            tenant_id, requester_id=requester_id, include_archived=include_archived
        )

    async def archive_session(
        self, session_id: str, tenant_id: str, requester_id: str | None = None
    ) -> ChatSession:
        """Soft-delete a session; it is no longer reused or listed by default."""
        session = await self.get_owned_session(
            session_id, tenant_id, requester_id, allow_archived=True
        )
        await self.repository.archive_session(session_id)
        logger.info("session_archived", session_id=session_id)
        return session.model_copy(update={"archived": True})
