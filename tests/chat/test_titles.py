"""Unit tests for session titles."""

from datetime import UTC, datetime

import pytest

from lecturechat.chat.config import ChatConfig
from lecturechat.chat.schemas import ChatSession, ModelTier, UsageOperation
from lecturechat.chat.titles import TitleService, clean_title, display_title, fallback_title
from lecturechat.ledger import PriceTable
from lecturechat.storage.memory import InMemoryRepository


@pytest.mark.unit
class TestTitleHelpers:
    """Test title formatting helpers."""

    def test_fallback_title(self) -> None:
        assert fallback_title(datetime(2026, 3, 5, tzinfo=UTC)) == "Chat from Mar 5, 2026"

    def test_display_title_prefers_generated_title(self) -> None:
        session = ChatSession(
            id="s", tenant_id="t", requester_id="u", created_at=datetime(2026, 3, 5, tzinfo=UTC)
        )

        assert display_title(session) == "Chat from Mar 5, 2026"
        assert display_title(session.model_copy(update={"title": "Momentum"})) == "Momentum"

    @pytest.mark.parametrize(
        ("raw", "max_chars", "expected"),
        [
            ('"Gradient Descent Basics."', 60, "Gradient Descent Basics"),
            ("  Eigenvalues   and  vectors!\n", 60, "Eigenvalues and vectors"),
            ("one two three four", 9, "one two"),
            ("   ", 60, ""),
        ],
    )
    def test_clean_title(self, raw: str, max_chars: int, expected: str) -> None:
        assert clean_title(raw, max_chars) == expected


@pytest.mark.unit
class TestTitleService:
    """Test suite for TitleService."""

    @pytest.fixture
    def session(self, repository: InMemoryRepository, clock) -> ChatSession:
        session = ChatSession(
            id="s1", tenant_id="tenant_a", requester_id="user_1", created_at=clock.now
        )
        repository.sessions[session.id] = session
        return session

    @pytest.fixture
    def build_service(
        self,
        repository: InMemoryRepository,
        chat_config: ChatConfig,
        clock,
        fake_agent,
        model_factory,
    ):
        def build(outcomes: list):
            agent = fake_agent(outcomes)
            service = TitleService(
                repository,
                chat_config,
                PriceTable(),
                agent=agent,
                model_factory=model_factory,
                clock=clock,
            )
            return service, agent

        return build

    @pytest.mark.asyncio
    async def test_generate_persists_title_and_usage(
        self, build_service, session: ChatSession, repository: InMemoryRepository, run_result
    ) -> None:
        service, agent = build_service([run_result('"Gradient Descent Basics."', 40, 6)])

        title = await service.generate(session, "How does gradient descent work?")

        assert title == "Gradient Descent Basics"
        assert repository.sessions["s1"].title == "Gradient Descent Basics"
        assert agent.calls[0].prompt == "How does gradient descent work?"
        [record] = repository.usage_records
        assert record.operation is UsageOperation.TITLE
        assert record.tier is ModelTier.FAST
        assert record.model == "gpt-4o-mini"
        assert (record.session_id, record.requester_id) == ("s1", "user_1")
        assert record.cost_usd == pytest.approx((40 * 0.15 + 6 * 0.60) / 1_000_000)

    @pytest.mark.asyncio
    async def test_failure_keeps_fallback_and_backs_off(
        self, build_service, session: ChatSession, repository: InMemoryRepository, clock
    ) -> None:
        service, agent = build_service([RuntimeError("model down"), "Recovered Title"])

        assert await service.generate(session, "hello") is None
        assert repository.sessions["s1"].title is None
        assert display_title(repository.sessions["s1"]) == fallback_title(session.created_at)

        assert service.schedule(session, "hello") is None
        clock.advance(seconds=301)
        task = service.schedule(session, "hello")

        assert task is not None
        assert await task == "Recovered Title"

    @pytest.mark.asyncio
    async def test_empty_title_counts_as_failure(
        self, build_service, session: ChatSession, repository: InMemoryRepository
    ) -> None:
        service, _ = build_service(['"..."'])

        assert await service.generate(session, "hello") is None
        assert repository.usage_records == []

    @pytest.mark.asyncio
    async def test_schedule_is_single_flight(self, build_service, session: ChatSession) -> None:
        service, agent = build_service(["Momentum"])

        first = service.schedule(session, "hello")
        second = service.schedule(session, "hello")
        await service.wait_for_pending()

        assert first is second
        assert len(agent.calls) == 1

    @pytest.mark.asyncio
    async def test_titled_session_is_not_scheduled(
        self, build_service, session: ChatSession
    ) -> None:
        service, agent = build_service(["Momentum"])

        assert service.schedule(session.model_copy(update={"title": "Set"}), "hello") is None
        assert agent.calls == []
