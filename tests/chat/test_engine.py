"""Unit tests for the chat engine."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from pydantic_ai.exceptions import ModelHTTPError

from lecturechat.chat.completion_service import CompletionService
from lecturechat.chat.config import ChatConfig
from lecturechat.chat.context import NO_CONTEXT_NOTICE
from lecturechat.chat.deps import ChatDeps
from lecturechat.chat.engine import FALLBACK_ANSWER, ChatEngine
from lecturechat.chat.schemas import ChatRequest, MessageRole, ModelTier, UsageOperation
from lecturechat.chat.sessions import SessionNotFound, SessionService
from lecturechat.chat.titles import TitleService
from lecturechat.errors import TransientNetwork, ValidationFailed
from lecturechat.ingestion.schemas import Chunk
from lecturechat.ledger import PriceTable
from lecturechat.storage.memory import InMemoryRepository
from lecturechat.storage.vector_index import VectorIndex


def make_chunk(video_id: str, start: float, end: float, text: str, embedding: list[float]) -> Chunk:
    return Chunk(
        video_id=video_id,
        tenant_id="tenant_a",
        chunk_index=0,
        text=text,
        word_count=len(text.split()),
        start_seconds=start,
        end_seconds=end,
        embedding=embedding,
    )


@pytest.mark.unit
class TestChatEngine:
    """Test suite for ChatEngine turns."""

    @pytest_asyncio.fixture
    async def library(self, repository: InMemoryRepository, video_factory, fake_embeddings):
        """Two indexed lectures; questions about gradients or momentum hit them."""
        await repository.insert_video(video_factory("vid_opt", title="Optimization 101"))
        await repository.insert_video(video_factory("vid_mom", title="Momentum Methods"))
        await repository.replace_chunks(
            "vid_opt",
            [
                make_chunk(
                    "vid_opt", 12.4, 60.0, "Gradient descent steps downhill.", [1.0, 0.0, 0.0]
                )
            ],
        )
        await repository.replace_chunks(
            "vid_mom",
            [make_chunk("vid_mom", 90.0, 150.0, "Momentum smooths the steps.", [0.95, 0.312, 0.0])],
        )
        fake_embeddings.vectors = {
            "gradient": [1.0, 0.0, 0.0],
            "weather": [0.0, 0.0, 1.0],
        }
        return repository

    @pytest.fixture
    def build_engine(
        self, library, chat_config: ChatConfig, fake_embeddings, fake_agent, model_factory, clock
    ):
        def build(chat_outcomes: list, title_outcomes: list | None = None):
            price_table = PriceTable()
            deps = ChatDeps(
                repository=library,
                vector_index=VectorIndex(library),
                embedding_service=fake_embeddings,
                price_table=price_table,
            )
            chat_agent = fake_agent(chat_outcomes)
            title_agent = fake_agent(title_outcomes or ["Gradient Descent"])
            engine = ChatEngine(
                deps,
                chat_config,
                CompletionService(chat_config, agent=chat_agent, model_factory=model_factory),
                SessionService(library, chat_config),
                TitleService(
                    library,
                    chat_config,
                    price_table,
                    agent=title_agent,
                    model_factory=model_factory,
                    clock=clock,
                ),
            )
            return engine, chat_agent, title_agent

        return build

    def request(self, message: str, **kwargs) -> ChatRequest:
        return ChatRequest(tenant_id="tenant_a", requester_id="user_1", message=message, **kwargs)

    @pytest.mark.asyncio
    async def test_grounded_answer_with_citation(
        self, build_engine, library: InMemoryRepository, run_result
    ) -> None:
        engine, chat_agent, _ = build_engine(
            [run_result("Take small steps downhill [Source 1 @ 00:12].", 100, 20)]
        )

        result = await engine.chat(self.request("How does gradient descent work?"))

        message = result.assistant_message
        assert message.role is MessageRole.ASSISTANT
        assert message.content == "Take small steps downhill [Source 1 @ 00:12]."
        [reference] = message.video_references
        assert reference.video_id == "vid_opt"
        assert reference.video_title == "Optimization 101"
        assert reference.timestamp == 12.4
        assert result.passages_retrieved == 2
        assert result.model == "gpt-4o-mini"
        assert result.tier is ModelTier.FAST

        prompt = chat_agent.calls[0].prompt
        assert 'Source 1: "Optimization 101" @ 00:12' in prompt
        assert prompt.endswith("How does gradient descent work?")

        stored = await library.list_messages(result.session_id)
        assert [m.role for m in stored] == [MessageRole.USER, MessageRole.ASSISTANT]

    @pytest.mark.asyncio
    async def test_turn_cost_is_recorded_per_call(
        self, build_engine, library: InMemoryRepository, run_result
    ) -> None:
        engine, _, _ = build_engine([run_result("An answer.", 100, 20)])

        result = await engine.chat(self.request("gradient question"))
        await engine.titles.wait_for_pending()

        turn_records = [r for r in library.usage_records if r.operation is not UsageOperation.TITLE]
        assert sorted(r.operation for r in turn_records) == [
            UsageOperation.COMPLETION,
            UsageOperation.EMBEDDING,
        ]
        assert all(r.message_id == result.assistant_message.id for r in turn_records)
        assert all(r.session_id == result.session_id for r in turn_records)
        assert all(r.requester_id == "user_1" for r in turn_records)
        expected = (100 * 0.15 + 20 * 0.60 + 2 * 0.02) / 1_000_000
        assert result.cost_usd == pytest.approx(expected)
        assert sum(r.cost_usd for r in turn_records) == pytest.approx(expected)

    @pytest.mark.asyncio
    async def test_no_relevant_passage_still_answers(self, build_engine) -> None:
        engine, chat_agent, _ = build_engine(["No relevant video content was found."])

        result = await engine.chat(self.request("What is the weather like?"))

        assert result.passages_retrieved == 0
        assert result.assistant_message.video_references == []
        assert NO_CONTEXT_NOTICE in chat_agent.calls[0].prompt

    @pytest.mark.asyncio
    async def test_anchor_video_is_preferred(self, build_engine) -> None:
        engine, chat_agent, _ = build_engine(["Answer."])

        await engine.chat(self.request("gradient again", anchor_video_id="vid_mom"))

        prompt = chat_agent.calls[0].prompt
        assert 'Source 1: "Momentum Methods"' in prompt
        assert 'Source 2: "Optimization 101"' in prompt

    @pytest.mark.asyncio
    async def test_completion_failure_returns_fallback(
        self, build_engine, library: InMemoryRepository
    ) -> None:
        engine, _, _ = build_engine([ModelHTTPError(status_code=401, model_name="gpt-4o-mini")])

        result = await engine.chat(self.request("gradient question"))

        assert result.assistant_message.content == FALLBACK_ANSWER
        assert result.assistant_message.video_references == []
        assert result.assistant_message.output_tokens == 0
        operations = [r.operation for r in library.usage_records]
        assert UsageOperation.COMPLETION not in operations
        assert UsageOperation.EMBEDDING in operations

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades_to_no_context(
        self, build_engine, fake_embeddings, run_result
    ) -> None:
        fake_embeddings.error = TransientNetwork("embedding down", "embedding")
        engine, chat_agent, _ = build_engine([run_result("General guidance.")])

        result = await engine.chat(self.request("gradient question"))

        assert result.passages_retrieved == 0
        assert result.assistant_message.content == "General guidance."
        assert NO_CONTEXT_NOTICE in chat_agent.calls[0].prompt

    @pytest.mark.asyncio
    async def test_search_backend_failure_degrades_to_no_context(
        self, build_engine, library: InMemoryRepository, monkeypatch, run_result
    ) -> None:
        monkeypatch.setattr(
            library, "search_chunks", AsyncMock(side_effect=RuntimeError("connection reset"))
        )
        engine, chat_agent, _ = build_engine([run_result("General guidance.")])

        result = await engine.chat(self.request("gradient question"))

        assert result.passages_retrieved == 0
        assert result.assistant_message.content == "General guidance."
        assert NO_CONTEXT_NOTICE in chat_agent.calls[0].prompt
        stored = await library.list_messages(result.session_id)
        assert [m.role for m in stored] == [MessageRole.USER, MessageRole.ASSISTANT]

    @pytest.mark.asyncio
    async def test_concurrent_turns_on_one_session_are_serialized(self, build_engine) -> None:
        engine, chat_agent, _ = build_engine(["Answer."])
        run = chat_agent.run

        async def slow_run(*args, **kwargs):
            await asyncio.sleep(0.01)
            return await run(*args, **kwargs)

        chat_agent.run = slow_run
        first = await engine.chat(self.request("gradient question"))

        await asyncio.gather(
            engine.chat(self.request("and momentum?", session_id=first.session_id)),
            engine.chat(self.request("and step size?", session_id=first.session_id)),
        )

        assert sorted(len(c.history) for c in chat_agent.calls[1:]) == [2, 4]
        assert engine.sessions._locks == {}

    @pytest.mark.asyncio
    async def test_follow_up_reuses_session_and_history(self, build_engine) -> None:
        engine, chat_agent, title_agent = build_engine(["First answer.", "Second answer."])

        first = await engine.chat(self.request("gradient question"))
        second = await engine.chat(self.request("and momentum?"))
        await engine.titles.wait_for_pending()

        assert second.session_id == first.session_id
        assert chat_agent.calls[0].history == []
        assert len(chat_agent.calls[1].history) == 2
        assert len(title_agent.calls) == 1

    @pytest.mark.asyncio
    async def test_first_turn_generates_title(
        self, build_engine, library: InMemoryRepository
    ) -> None:
        engine, _, title_agent = build_engine(["Answer."], ["Gradient Descent"])

        result = await engine.chat(self.request("How does gradient descent work?"))
        await engine.titles.wait_for_pending()

        assert library.sessions[result.session_id].title == "Gradient Descent"
        assert title_agent.calls[0].prompt == "How does gradient descent work?"

    @pytest.mark.asyncio
    async def test_failed_title_is_retried_on_a_later_turn(
        self, build_engine, library: InMemoryRepository, clock
    ) -> None:
        server_error = ModelHTTPError(status_code=500, model_name="gpt-4o-mini")
        engine, _, title_agent = build_engine(["Answer."], [server_error, "Gradient Descent"])

        first = await engine.chat(self.request("How does gradient descent work?"))
        await engine.titles.wait_for_pending()
        await engine.chat(self.request("and momentum?", session_id=first.session_id))
        await engine.titles.wait_for_pending()

        assert len(title_agent.calls) == 1
        assert library.sessions[first.session_id].title is None

        clock.advance(seconds=301)
        await engine.chat(self.request("and step size?", session_id=first.session_id))
        await engine.titles.wait_for_pending()

        assert len(title_agent.calls) == 2
        assert title_agent.calls[1].prompt == "How does gradient descent work?"
        assert library.sessions[first.session_id].title == "Gradient Descent"

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, build_engine) -> None:
        engine, chat_agent, _ = build_engine(["unused"])

        with pytest.raises(ValidationFailed):
            await engine.chat(self.request("   "))

        assert chat_agent.calls == []

    @pytest.mark.asyncio
    async def test_foreign_session_is_rejected(self, build_engine) -> None:
        engine, _, _ = build_engine(["Answer."])
        first = await engine.chat(self.request("gradient question"))

        with pytest.raises(SessionNotFound):
            await engine.chat(
                ChatRequest(
                    tenant_id="tenant_a",
                    requester_id="user_2",
                    message="hijack",
                    session_id=first.session_id,
                )
            )
