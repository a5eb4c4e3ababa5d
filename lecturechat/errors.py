"""Failure taxonomy shared by every external-facing component.

Adapters, the embedding client and the completion client classify every
provider failure into one of these classes. The ingestion orchestrator decides
whether to retry, advance the extraction plan, or abort based solely on the
class, never on provider-specific error text.
"""

import openai


class PipelineError(Exception):
    """Base class for classified pipeline failures.

    Attributes:
        message: Human-readable reason, safe to store and show to creators.
        method: Extraction method (or provider) that was being attempted.
    """

    def __init__(self, message: str, method: str | None = None):
        super().__init__(message)
        self.message = message
        self.method = method


class SourceNotAvailable(PipelineError):
    """No transcript could be obtained by any method in the plan."""


class NotAvailable(PipelineError):
    """A single extraction method has nothing to offer (e.g. no captions)."""


class ProviderTransient(PipelineError):
    """Temporary provider failure; retried with backoff."""


class RateLimited(ProviderTransient):
    """Provider asked us to slow down."""


class TransientNetwork(ProviderTransient):
    """Connection problem, timeout or 5xx from the provider."""


class ProviderPermanent(PipelineError):
    """Auth failure, exhausted quota or rejected content; never retried."""


class PermanentReject(ProviderPermanent):
    """The source itself is unusable (private, removed, too large)."""


class ValidationFailed(PipelineError):
    """Malformed input detected before (or instead of) an external call."""


class IngestionCancelled(PipelineError):
    """The tenant cancelled an in-flight ingestion job."""


def classify_openai_error(error: Exception, method: str | None = None) -> PipelineError:
    """Map an ``openai`` SDK exception onto the failure taxonomy.

    Used by every OpenAI-compatible client: speech-to-text, embeddings and
    completions.
    """
    if isinstance(error, openai.RateLimitError):
        # 429 is also how OpenAI reports an exhausted billing quota.
        if getattr(error, "code", None) == "insufficient_quota":
            return ProviderPermanent("Provider quota exhausted", method)
        return RateLimited("Provider rate limit exceeded", method)
    if isinstance(error, (openai.APIConnectionError, openai.APITimeoutError)):
        return TransientNetwork(f"Network error: {type(error).__name__}", method)
    if isinstance(error, openai.InternalServerError):
        return TransientNetwork("Provider server error", method)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderPermanent("Provider rejected credentials", method)
    if isinstance(error, openai.BadRequestError):
        return PermanentReject("Provider rejected the input", method)
    return ProviderPermanent(f"Provider call failed: {type(error).__name__}", method)
