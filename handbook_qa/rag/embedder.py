"""Text embedding through the OpenAI embeddings endpoint.

The same model is used for chunks at ingestion time and for questions at
query time; vectors from different models are not comparable.
"""
from typing import List, Protocol

import httpx
import structlog

from handbook_qa import config
from handbook_qa.errors import EmbeddingServiceError
from handbook_qa.llm_client import OpenAIClient, describe_http_error

logger = structlog.get_logger()


class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    async def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbedder:
    """Embedder backed by an OpenAI-compatible API."""

    def __init__(
        self,
        client: OpenAIClient,
        model: str = None,
        dimension: int = None,
    ):
        """Initialize the embedder.

        Args:
            client: API client used for the remote call
            model: Embedding model id (default from config)
            dimension: Expected vector length (default from config)
        """
        self.client = client
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIM

    def _check_credential(self) -> None:
        api_key = self.client.api_key
        if not api_key:
            raise EmbeddingServiceError(
                "OPENAI_API_KEY environment variable is not set",
                status="config",
                code="missing_api_key",
            )
        if not api_key.startswith("sk-"):
            raise EmbeddingServiceError(
                f"OPENAI_API_KEY appears invalid (starts with: {api_key[:3]}...)",
                status="config",
                code="invalid_api_key",
            )

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Args:
            text: Non-empty text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingServiceError: On credential problems, remote errors or timeouts
        """
        self._check_credential()

        try:
            response = await self.client.embeddings(text, model=self.model)
        except httpx.HTTPError as e:
            status, code, message = describe_http_error(e)
            raise EmbeddingServiceError(message, status=status, code=code) from e
        except ValueError as e:
            # 200 with a body that is not JSON
            raise EmbeddingServiceError(
                f"Embeddings response is not valid JSON: {e}",
                status=200,
                code="bad_response",
            ) from e

        try:
            embedding = response["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingServiceError(
                "Unexpected embeddings response format",
                status=200,
                code="bad_response",
            ) from e

        if not isinstance(embedding, list):
            raise EmbeddingServiceError(
                "Unexpected embeddings response format",
                status=200,
                code="bad_response",
            )

        if len(embedding) != self.dimension:
            raise EmbeddingServiceError(
                f"Expected {self.dimension}-dimensional embedding from {self.model}, "
                f"got {len(embedding)}",
                status=200,
                code="dimension_mismatch",
            )

        logger.debug("text_embedded", model=self.model, dimension=len(embedding))
        return embedding
