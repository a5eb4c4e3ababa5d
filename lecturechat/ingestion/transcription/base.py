"""Base transcription provider interface."""

import asyncio
from abc import ABC, abstractmethod

import httpx

from lecturechat.errors import (
    NotAvailable,
    PermanentReject,
    PipelineError,
    ProviderPermanent,
    RateLimited,
    TransientNetwork,
)
from lecturechat.utils.logging import get_logger

from ..schemas import ExtractionMethod, ExtractionResult, Transcript, Video

logger = get_logger(__name__)


class TranscriptionProvider(ABC):
    """Abstract base class for transcript extraction adapters.

    Subclasses implement ``fetch`` and raise taxonomy errors from
    ``lecturechat.errors``. Callers use ``extract``, which applies the hard
    timeout and turns every outcome into an ``ExtractionResult`` so no provider
    detail leaks past this boundary.
    """

    method: ExtractionMethod
    timeout_seconds: float = 30.0

    @property
    def paid(self) -> bool:
        return self.method.is_paid

    @abstractmethod
    async def fetch(self, video: Video) -> Transcript:
        """Fetch a timed transcript for the video's source reference.

        Raises:
            NotAvailable: The method has no transcript for this source.
            ProviderTransient: Rate limits, timeouts and network failures.
            ProviderPermanent: Auth failures and rejected or missing sources.
        """

    async def extract(self, video: Video) -> ExtractionResult:
        """Run ``fetch`` under the hard timeout and classify the outcome."""
        try:
            transcript = await asyncio.wait_for(
                self.fetch(video), timeout=self.timeout_seconds
            )
        except PipelineError as e:
            e.method = e.method or self.method.value
            return ExtractionResult(method=self.method, failure=e)
        except TimeoutError:
            return ExtractionResult(
                method=self.method,
                failure=TransientNetwork(
                    f"Timed out after {self.timeout_seconds:.0f}s", self.method.value
                ),
            )
        except httpx.TransportError as e:
            return ExtractionResult(
                method=self.method,
                failure=TransientNetwork(
                    f"Network error: {type(e).__name__}", self.method.value
                ),
            )

        if not transcript.segments and not transcript.text.strip():
            return ExtractionResult(
                method=self.method,
                failure=NotAvailable("Transcript is empty", self.method.value),
            )
        return ExtractionResult(method=self.method, transcript=transcript)


def raise_for_status(
    response: httpx.Response,
    method: ExtractionMethod,
    not_found: type[PipelineError] = NotAvailable,
) -> None:
    """Classify a non-2xx provider response into the failure taxonomy.

    Args:
        response: Provider HTTP response.
        method: Method being attempted, recorded on the error.
        not_found: Class raised for 404, which means "no captions" for caption
            endpoints but "source removed" for asset endpoints.
    """
    status = response.status_code
    if status < 400:
        return

    logger.warning(
        "provider_http_error",
        method=method.value,
        status_code=status,
    )

    if status == 404:
        raise not_found(f"Not found ({status})", method.value)
    if status == 429:
        raise RateLimited("Provider rate limit exceeded", method.value)
    if status in (401, 402):
        raise ProviderPermanent("Provider rejected credentials or quota", method.value)
    if status in (403, 410, 451):
        raise PermanentReject("Video is private or has been removed", method.value)
    if status >= 500 or status == 408:
        raise TransientNetwork(f"Provider error ({status})", method.value)
    raise ProviderPermanent(f"Provider rejected request ({status})", method.value)
