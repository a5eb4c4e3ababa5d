"""Fixtures for chat tests: a scripted agent, a fixed clock and fast settings."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from lecturechat.chat.config import ChatConfig
from lecturechat.chat.schemas import ModelTier


class FakeRunResult:
    """Stands in for a pydantic-ai run result."""

    def __init__(self, output: str, input_tokens: int = 100, output_tokens: int = 20):
        self.output = output
        self._usage = SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)

    def usage(self) -> SimpleNamespace:
        return self._usage


class FakeAgent:
    """Agent returning scripted outcomes in order, repeating the last one."""

    def __init__(self, outcomes: list):
        self.outcomes = list(outcomes)
        self.calls: list[SimpleNamespace] = []

    async def run(self, prompt, message_history=None, model=None):
        self.calls.append(SimpleNamespace(prompt=prompt, history=message_history, model=model))
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return FakeRunResult(outcome)
        return outcome


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def fake_model(tier: ModelTier = ModelTier.FAST) -> SimpleNamespace:
    names = {ModelTier.FAST: "gpt-4o-mini", ModelTier.STRONG: "gpt-4o"}
    return SimpleNamespace(model_name=names[tier])


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(
        top_k=5,
        similarity_floor=0.7,
        anchor_boost=0.1,
        session_freshness_hours=24,
        history_limit=10,
        completion_max_attempts=3,
        completion_timeout_seconds=5,
        completion_retry_base_seconds=0,
        title_max_chars=60,
        title_retry_after_seconds=300,
    )


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 3, 10, 9, 0, tzinfo=UTC))


@pytest.fixture
def fake_agent():
    return FakeAgent


@pytest.fixture
def run_result():
    return FakeRunResult


@pytest.fixture
def model_factory():
    return fake_model
