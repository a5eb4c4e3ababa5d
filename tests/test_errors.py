"""Unit tests for the failure taxonomy and OpenAI error classification."""

import httpx
import openai
import pytest

from lecturechat.errors import (
    PermanentReject,
    PipelineError,
    ProviderPermanent,
    ProviderTransient,
    RateLimited,
    TransientNetwork,
    classify_openai_error,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def status_error(
    cls: type[openai.APIStatusError], status: int, body: dict | None = None
) -> openai.APIStatusError:
    return cls("provider said no", response=httpx.Response(status, request=REQUEST), body=body)


@pytest.mark.unit
class TestFailureTaxonomy:
    """Test the exception hierarchy."""

    def test_rate_limit_is_transient(self) -> None:
        assert issubclass(RateLimited, ProviderTransient)
        assert issubclass(TransientNetwork, ProviderTransient)

    def test_permanent_reject_is_permanent(self) -> None:
        assert issubclass(PermanentReject, ProviderPermanent)

    def test_error_carries_message_and_method(self) -> None:
        error = RateLimited("slow down", "whisper")

        assert isinstance(error, PipelineError)
        assert error.message == "slow down"
        assert error.method == "whisper"
        assert str(error) == "slow down"


@pytest.mark.unit
class TestClassifyOpenAIError:
    """Test mapping of SDK exceptions."""

    def test_rate_limit(self) -> None:
        error = classify_openai_error(status_error(openai.RateLimitError, 429), "embedding")

        assert isinstance(error, RateLimited)
        assert error.method == "embedding"

    def test_exhausted_quota_is_permanent(self) -> None:
        body = {"message": "You exceeded your current quota", "code": "insufficient_quota"}
        error = classify_openai_error(status_error(openai.RateLimitError, 429, body), "whisper")

        assert type(error) is ProviderPermanent
        assert error.message == "Provider quota exhausted"
        assert error.method == "whisper"

    def test_server_error_is_transient(self) -> None:
        error = classify_openai_error(status_error(openai.InternalServerError, 503))

        assert isinstance(error, TransientNetwork)

    def test_connection_error_is_transient(self) -> None:
        error = classify_openai_error(openai.APIConnectionError(request=REQUEST))

        assert isinstance(error, TransientNetwork)

    def test_timeout_is_transient(self) -> None:
        error = classify_openai_error(openai.APITimeoutError(request=REQUEST))

        assert isinstance(error, TransientNetwork)

    def test_authentication_is_permanent(self) -> None:
        error = classify_openai_error(status_error(openai.AuthenticationError, 401))

        assert type(error) is ProviderPermanent

    def test_bad_request_rejects_input(self) -> None:
        error = classify_openai_error(status_error(openai.BadRequestError, 400))

        assert isinstance(error, PermanentReject)
