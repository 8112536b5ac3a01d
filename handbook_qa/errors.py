"""Exception hierarchy for the handbook Q&A service."""
from typing import Optional, Union


class HandbookQAError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(HandbookQAError):
    """The caller supplied an unusable question."""


class ConfigurationError(HandbookQAError):
    """Required configuration or credentials are missing."""


class RequestTimeoutError(HandbookQAError):
    """Answering a question exceeded the request budget."""


class ServiceError(HandbookQAError):
    """An external service call failed.

    Carries the remote status and error code so callers can diagnose the
    failure without retrying blindly.
    """

    service = "external service"

    def __init__(
        self,
        message: str,
        status: Union[int, str, None] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.status = status if status is not None else "unknown"
        self.code = code or "unknown"
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            f"{self.service} failed (status={self.status}, code={self.code}): "
            f"{self.message}"
        )


class EmbeddingServiceError(ServiceError):
    """Embedding generation failed (credential, network or remote error)."""

    service = "Embedding"


class RetrievalServiceError(ServiceError):
    """Vector search failed (store unreachable or query rejected)."""

    service = "Vector search"


class GenerationServiceError(ServiceError):
    """Chat completion failed."""

    service = "Generation"
